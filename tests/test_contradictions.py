from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from deepresearch.models.research import Fact, VerificationStatus
from deepresearch.research_core.contradictions import (
    comparison_pairs,
    detect_contradictions,
    parse_judgment,
)
from deepresearch.services.memory_store import InMemoryResearchStore


def _fact(fact_id, statement, status=VerificationStatus.UNVERIFIED):
    return Fact(id=fact_id, session_id="s1", statement=statement, verification_status=status)


def test_comparison_pairs_only_looks_ahead_within_window():
    pairs = comparison_pairs(4, window=3)
    assert pairs == [(0, 1), (0, 2), (1, 2), (1, 3), (2, 3)]


@pytest.mark.parametrize("count", [0, 1, 2, 10, 11, 25, 100])
def test_comparison_pairs_are_bounded_by_nine_per_fact(count):
    pairs = comparison_pairs(count, window=10)
    assert len(pairs) <= count * 9
    assert all(0 < j - i < 10 for i, j in pairs)


@pytest.mark.parametrize(
    "reply,expected",
    [
        ("NO", None),
        ("no, they agree", None),
        ("", None),
        ("  Not compatible: 500 vs 50 participants", None),
        ("Yes. One says 500 participants and the other 50.", "Yes. One says 500 participants and the other 50."),
    ],
)
def test_parse_judgment(reply, expected):
    assert parse_judgment(reply) == expected


@pytest.mark.asyncio
async def test_detect_contradictions_marks_both_facts_and_records_once():
    store = InMemoryResearchStore()
    facts = [
        await store.add_fact(_fact("f1", "The study had 500 participants")),
        await store.add_fact(
            _fact("f2", "The study had 50 participants", status=VerificationStatus.VERIFIED)
        ),
    ]

    async def judge(prompt, **kwargs):
        if "500 participants" in prompt and "50 participants" in prompt:
            return "The participant counts disagree (500 vs 50)."
        return "NO"

    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=judge)

    found = [item async for item in detect_contradictions(store, generator, "s1", facts)]

    assert len(found) == 1
    contradiction, fact_1, fact_2 = found[0]
    assert (contradiction.fact_id_1, contradiction.fact_id_2) == ("f1", "f2")
    assert contradiction.severity == "moderate"
    assert "500 vs 50" in contradiction.explanation

    records = await store.list_contradictions("s1")
    assert len(records) == 1
    persisted = {f.id: f for f in await store.list_facts("s1")}
    assert persisted["f1"].verification_status == VerificationStatus.CONTRADICTED
    assert persisted["f2"].verification_status == VerificationStatus.CONTRADICTED
    assert all(f.verification_status == VerificationStatus.CONTRADICTED for f in facts)


@pytest.mark.asyncio
async def test_detect_contradictions_respects_window_and_survives_errors():
    store = InMemoryResearchStore()
    facts = [await store.add_fact(_fact(f"f{i}", f"Statement number {i} is here")) for i in range(15)]

    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=RuntimeError("judge unavailable"))

    found = [item async for item in detect_contradictions(store, generator, "s1", facts, window=10)]

    assert found == []
    assert generator.generate.await_count == len(comparison_pairs(15, window=10))
    assert generator.generate.await_count <= 15 * 9
    assert await store.list_contradictions("s1") == []
