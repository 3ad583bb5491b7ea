from __future__ import annotations

from typing import Any

from deepresearch.models.events import EventType, ResearchEvent
from deepresearch.models.research import Contradiction, Fact, SessionStatus, Source


def status_change(
    session_id: str,
    status: SessionStatus,
    *,
    error: str | None = None,
    **kwargs: Any,
) -> ResearchEvent:
    """Emit a session status transition."""
    data: dict[str, Any] = {"status": SessionStatus(status).value}
    if error:
        data["error"] = error
    data.update(kwargs)
    return ResearchEvent(session_id=session_id, event=EventType.STATUS_CHANGE, data=data)


def source_found(session_id: str, source: Source) -> ResearchEvent:
    return ResearchEvent(
        session_id=session_id,
        event=EventType.SOURCE_FOUND,
        data={
            "source_id": source.id,
            "title": source.title,
            "url": source.url,
            "provider": source.provider,
            "credibility": source.credibility.overall,
        },
    )


def fact_extracted(session_id: str, fact: Fact, source_id: str) -> ResearchEvent:
    return ResearchEvent(
        session_id=session_id,
        event=EventType.FACT_EXTRACTED,
        data={"fact_id": fact.id, "statement": fact.statement, "source_id": source_id},
    )


def contradiction_detected(
    session_id: str,
    contradiction: Contradiction,
    fact_1: Fact,
    fact_2: Fact,
) -> ResearchEvent:
    return ResearchEvent(
        session_id=session_id,
        event=EventType.CONTRADICTION_DETECTED,
        data={
            "contradiction_id": contradiction.id,
            "fact_1": fact_1.statement,
            "fact_2": fact_2.statement,
            "explanation": contradiction.explanation,
        },
    )


def progress(session_id: str, phase: str, **kwargs: Any) -> ResearchEvent:
    return ResearchEvent(
        session_id=session_id,
        event=EventType.PROGRESS,
        data={"phase": phase, **kwargs},
    )
