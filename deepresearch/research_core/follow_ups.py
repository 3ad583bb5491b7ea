from __future__ import annotations

import uuid

from deepresearch.llm_client import TextGenerator
from deepresearch.models.research import Fact, FollowUpQuestion
from deepresearch.research_core.json_utils import extract_json_array, string_items
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt
from deepresearch.services.research_store import ResearchStore

FOLLOW_UP_COUNT = 5
FOLLOW_UP_FACT_LIMIT = 30
FOLLOW_UP_TOKEN_BUDGET = 1000
DEFAULT_PRIORITY = 0.7


async def generate_follow_ups(
    store: ResearchStore,
    generator: TextGenerator,
    session_id: str,
    query: str,
    facts: list[Fact],
    *,
    count: int = FOLLOW_UP_COUNT,
) -> list[FollowUpQuestion]:
    facts_text = "\n".join(f.statement for f in facts[:FOLLOW_UP_FACT_LIMIT])
    prompt = render_prompt("follow_ups.generate", query=query, facts=facts_text, count=count)
    try:
        raw = await generator.generate(prompt, max_tokens=FOLLOW_UP_TOKEN_BUDGET, caller="follow_ups")
    except Exception as e:
        log_service.log_event(
            event_type="follow_up_generation_failed",
            message="Follow-up generation failed",
            session_id=session_id,
            error=str(e),
        )
        return []

    saved: list[FollowUpQuestion] = []
    for question in string_items(extract_json_array(raw))[:count]:
        saved.append(
            await store.add_follow_up(
                FollowUpQuestion(
                    id=str(uuid.uuid4()),
                    session_id=session_id,
                    question=question,
                    priority=DEFAULT_PRIORITY,
                )
            )
        )
    return saved
