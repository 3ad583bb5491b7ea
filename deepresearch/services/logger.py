"""Loguru setup plus structured helpers for research sessions.

Console output is human-readable. The file sink writes one JSON record per
line (``serialize=True``) with the helper payloads under ``extra``, so a
session can be traced with ``jq 'select(.record.extra.session_id == ...)'``.
"""

import logging
import sys
from typing import Any, Optional

from loguru import logger

from deepresearch.config import settings

LOG_DIR = settings.log_dir

logger.remove()
logger.configure(extra={"kind": "app"})

logger.add(
    sys.stderr,
    format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <magenta>{extra[kind]}</magenta> | <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    f"{LOG_DIR}/deepresearch_{{time:YYYY-MM-DD}}.jsonl",
    level="DEBUG",
    serialize=True,
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncpg",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    bound = logger.bind(
        kind="llm_call",
        model=model,
        caller=caller,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        duration_ms=duration_ms,
        status=status,
    )
    if error:
        bound.bind(error=error).error(f"{caller} generation failed after {duration_ms}ms: {error}")
    else:
        bound.info(f"{caller} generated {output_tokens} tokens with {model} in {duration_ms}ms")


def log_research_step(
    session_id: str,
    step_type: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Record a phase transition; failures log at ERROR."""
    bound = logger.bind(
        kind="research_step",
        session_id=session_id,
        step=step_type,
        status=status,
        data=data or {},
    )
    summary = ", ".join(f"{k}={v}" for k, v in (data or {}).items())
    message = f"[{session_id[:8]}] {step_type} {status}" + (f" ({summary})" if summary else "")
    if status == "failed":
        bound.error(message)
    else:
        bound.info(message)


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    bound = logger.bind(kind="db", operation=operation, table=table, status=status, details=details)
    if error:
        bound.bind(error=error).error(f"{operation} on {table} failed: {error}")
    else:
        bound.debug(f"{operation} on {table}: {status}")


def log_event(
    event_type: str,
    message: str,
    **kwargs: Any,
) -> None:
    logger.bind(kind="event", event_type=event_type, **kwargs).info(f"{event_type}: {message}")
