from __future__ import annotations

import uuid
from typing import AsyncIterator

from deepresearch.config import settings
from deepresearch.llm_client import TextGenerator
from deepresearch.models.research import Contradiction, Fact, VerificationStatus
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt
from deepresearch.services.research_store import ResearchStore

CONTRADICTION_TOKEN_BUDGET = 200
DEFAULT_SEVERITY = "moderate"


def comparison_pairs(count: int, window: int | None = None) -> list[tuple[int, int]]:
    """Index pairs (i, j) with j in [i+1, min(i+window, count))."""
    size = settings.contradiction_window if window is None else window
    return [(i, j) for i in range(count) for j in range(i + 1, min(i + size, count))]


def parse_judgment(reply: str) -> str | None:
    """Return the explanation, or None when the reply starts with NO."""
    text = (reply or "").strip()
    if not text or text.upper().startswith("NO"):
        return None
    return text


async def judge_contradiction(generator: TextGenerator, fact_1: Fact, fact_2: Fact) -> str | None:
    prompt = render_prompt(
        "contradictions.judge",
        fact_1=fact_1.statement,
        fact_2=fact_2.statement,
    )
    try:
        reply = await generator.generate(
            prompt,
            max_tokens=CONTRADICTION_TOKEN_BUDGET,
            caller="contradiction_check",
        )
    except Exception as e:
        log_service.log_event(
            event_type="contradiction_check_failed",
            message="Contradiction judgment failed",
            fact_id_1=fact_1.id,
            fact_id_2=fact_2.id,
            error=str(e),
        )
        return None
    return parse_judgment(reply)


async def detect_contradictions(
    store: ResearchStore,
    generator: TextGenerator,
    session_id: str,
    facts: list[Fact],
    *,
    window: int | None = None,
) -> AsyncIterator[tuple[Contradiction, Fact, Fact]]:
    """Judge each fact against its next few neighbours, yielding each hit.

    Every positive judgment is persisted and both facts are marked
    contradicted, overriding any earlier verified status.
    """
    for i, j in comparison_pairs(len(facts), window):
        fact_1, fact_2 = facts[i], facts[j]
        explanation = await judge_contradiction(generator, fact_1, fact_2)
        if explanation is None:
            continue

        contradiction = await store.add_contradiction(
            Contradiction(
                id=str(uuid.uuid4()),
                session_id=session_id,
                fact_id_1=fact_1.id,
                fact_id_2=fact_2.id,
                explanation=explanation,
                severity=DEFAULT_SEVERITY,
            )
        )
        for fact in (fact_1, fact_2):
            fact.verification_status = VerificationStatus.CONTRADICTED
            await store.update_fact(fact.id, verification_status=VerificationStatus.CONTRADICTED)
        yield contradiction, fact_1, fact_2
