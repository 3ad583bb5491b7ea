"""Fact candidate extraction and cross-source verification."""
from __future__ import annotations

from deepresearch.config import settings
from deepresearch.llm_client import TextGenerator
from deepresearch.models.research import Fact, Source, VerificationStatus
from deepresearch.research_core.json_utils import extract_json_array, string_items
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt
from deepresearch.services.research_store import ResearchStore

MIN_SOURCE_CHARS = 100
MIN_STATEMENT_CHARS = 10
MAX_STATEMENT_CHARS = 500
SIMILARITY_THRESHOLD = 0.7
VERIFIED_THRESHOLD = 3
FACT_TOKEN_BUDGET = 1500


def is_fact_candidate(statement: str) -> bool:
    return MIN_STATEMENT_CHARS <= len(statement) <= MAX_STATEMENT_CHARS


def word_set(text: str) -> set[str]:
    return set(text.lower().split())


def jaccard_similarity(text_1: str, text_2: str) -> float:
    return _jaccard(word_set(text_1), word_set(text_2))


def _jaccard(words_1: set[str], words_2: set[str]) -> float:
    union = words_1 | words_2
    if not union:
        return 0.0
    return len(words_1 & words_2) / len(union)


def confidence_for(verification_count: int) -> float:
    return min(0.95, 0.5 + 0.15 * verification_count)


def status_for(verification_count: int) -> VerificationStatus:
    if verification_count >= VERIFIED_THRESHOLD:
        return VerificationStatus.VERIFIED
    return VerificationStatus.UNVERIFIED


async def extract_fact_candidates(
    generator: TextGenerator,
    source: Source,
    *,
    char_limit: int | None = None,
) -> list[str]:
    """Delegate 5-10 statements for one source; failures yield an empty list."""
    if len(source.content) < MIN_SOURCE_CHARS:
        return []
    limit = char_limit or settings.fact_content_char_limit
    prompt = render_prompt("facts.extract", title=source.title, content=source.content[:limit])
    try:
        raw = await generator.generate(prompt, max_tokens=FACT_TOKEN_BUDGET, caller="fact_extraction")
    except Exception as e:
        log_service.log_event(
            event_type="fact_extraction_failed",
            message="Fact extraction failed",
            session_id=source.session_id,
            source_id=source.id,
            error=str(e),
        )
        return []
    return [s for s in string_items(extract_json_array(raw)) if is_fact_candidate(s)]


async def cross_verify(
    store: ResearchStore,
    facts: list[Fact],
    sources: list[Source],
    *,
    threshold: float = SIMILARITY_THRESHOLD,
) -> list[Fact]:
    """Vote each fact against every other source body and persist the outcome.

    The originating source counts once. Any other source whose body has a
    bag-of-words Jaccard similarity above ``threshold`` with the statement is
    linked to the fact and adds one more vote.
    """
    source_words = {source.id: word_set(source.content) for source in sources}

    for fact in facts:
        origin = fact.source_ids[0] if fact.source_ids else None
        statement_words = word_set(fact.statement)
        count = 1
        for source_id, words in source_words.items():
            if source_id == origin:
                continue
            if _jaccard(statement_words, words) > threshold:
                await store.link_fact_source(fact.id, source_id)
                if source_id not in fact.source_ids:
                    fact.source_ids.append(source_id)
                count += 1

        fact.verification_count = count
        fact.confidence = confidence_for(count)
        fact.verification_status = status_for(count)
        await store.update_fact(
            fact.id,
            confidence=fact.confidence,
            verification_status=fact.verification_status,
            verification_count=count,
        )
    return facts
