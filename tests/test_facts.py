from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from deepresearch.models.research import Fact, Source, VerificationStatus
from deepresearch.research_core.facts import (
    confidence_for,
    cross_verify,
    extract_fact_candidates,
    is_fact_candidate,
    jaccard_similarity,
    status_for,
)
from deepresearch.services.memory_store import InMemoryResearchStore

LONG_BODY = "Quantum computers use qubits that can exist in superposition. " * 5


def _source(source_id, content=LONG_BODY, session_id="s1"):
    return Source(
        id=source_id,
        session_id=session_id,
        url=f"https://example.com/{source_id}",
        title=f"Source {source_id}",
        content=content,
        provider="test",
    )


def _generator(reply=None, error=None):
    generator = MagicMock()
    generator.generate = AsyncMock(return_value=reply, side_effect=error)
    return generator


def test_is_fact_candidate_bounds_are_inclusive():
    assert not is_fact_candidate("x" * 9)
    assert is_fact_candidate("x" * 10)
    assert is_fact_candidate("x" * 500)
    assert not is_fact_candidate("x" * 501)


def test_jaccard_similarity_is_case_insensitive_bag_of_words():
    assert jaccard_similarity("Qubits are Fast", "qubits are fast") == 1.0
    assert jaccard_similarity("a b", "c d") == 0.0
    assert jaccard_similarity("", "") == 0.0
    assert jaccard_similarity("a b c", "a b d") == pytest.approx(0.5)


def test_confidence_and_status_are_monotonic_in_votes():
    counts = range(1, 10)
    confidences = [confidence_for(c) for c in counts]

    assert confidences == sorted(confidences)
    assert confidence_for(1) == pytest.approx(0.65)
    assert confidence_for(9) == 0.95
    assert status_for(2) == VerificationStatus.UNVERIFIED
    assert status_for(3) == VerificationStatus.VERIFIED


@pytest.mark.asyncio
async def test_extract_fact_candidates_filters_statement_lengths():
    generator = _generator(
        "Here you go:\n"
        + json.dumps(["Qubits can be entangled.", "short", "x" * 600, 42, "  "])
    )

    facts = await extract_fact_candidates(generator, _source("a"))

    assert facts == ["Qubits can be entangled."]
    prompt = generator.generate.await_args.args[0]
    assert "Source a" in prompt
    assert generator.generate.await_args.kwargs["max_tokens"] == 1500


@pytest.mark.asyncio
async def test_extract_fact_candidates_skips_short_sources():
    generator = _generator("[]")

    assert await extract_fact_candidates(generator, _source("a", content="too short")) == []
    generator.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_fact_candidates_truncates_content():
    generator = _generator("[]")

    await extract_fact_candidates(generator, _source("a", content="q" * 500), char_limit=120)

    prompt = generator.generate.await_args.args[0]
    assert "q" * 120 in prompt
    assert "q" * 121 not in prompt


@pytest.mark.asyncio
async def test_extract_fact_candidates_swallows_generation_errors():
    generator = _generator(error=RuntimeError("rate limited"))

    assert await extract_fact_candidates(generator, _source("a")) == []


@pytest.mark.asyncio
async def test_extract_fact_candidates_tolerates_unparseable_output():
    generator = _generator("I could not find any facts.")

    assert await extract_fact_candidates(generator, _source("a")) == []


@pytest.mark.asyncio
async def test_cross_verify_counts_matching_sources_and_persists():
    store = InMemoryResearchStore()
    statement = "quantum computers use qubits that can exist in superposition."
    matching = [_source(sid, content=statement) for sid in ("origin", "m1", "m2")]
    unrelated = _source("u1", content="Classical bits are either zero or one at any time.")
    sources = matching + [unrelated]
    for source in sources:
        await store.add_source(source)

    fact = await store.add_fact(
        Fact(id="f1", session_id="s1", statement=statement, source_ids=["origin"])
    )
    lonely = await store.add_fact(
        Fact(id="f2", session_id="s1", statement="Tea is a popular drink in England.", source_ids=["u1"])
    )

    await cross_verify(store, [fact, lonely], sources)

    assert fact.verification_count == 3
    assert fact.verification_status == VerificationStatus.VERIFIED
    assert fact.confidence == pytest.approx(0.95)
    assert fact.source_ids == ["origin", "m1", "m2"]
    assert lonely.verification_count == 1
    assert lonely.verification_status == VerificationStatus.UNVERIFIED

    persisted = {f.id: f for f in await store.list_facts("s1")}
    assert persisted["f1"].verification_count == 3
    assert persisted["f1"].source_ids == ["origin", "m1", "m2"]
    assert persisted["f2"].confidence == pytest.approx(0.65)


@pytest.mark.asyncio
async def test_cross_verify_more_sources_never_lowers_count():
    statement = "quantum computers use qubits that can exist in superposition."

    async def votes(source_count):
        store = InMemoryResearchStore()
        sources = [_source(f"s{i}", content=statement) for i in range(source_count)]
        fact = await store.add_fact(
            Fact(id="f", session_id="s1", statement=statement, source_ids=["s0"])
        )
        await cross_verify(store, [fact], sources)
        return fact.verification_count

    counts = [await votes(n) for n in range(1, 5)]

    assert counts == sorted(counts)
    assert counts[0] == 1
