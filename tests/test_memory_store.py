from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from deepresearch.models.events import EventType, ResearchEvent
from deepresearch.models.research import (
    Contradiction,
    Fact,
    FollowUpQuestion,
    KnowledgeNode,
    KnowledgeRelationship,
    Report,
    ResearchConfig,
    ResearchSession,
    SessionStatus,
    Source,
    VerificationStatus,
)
from deepresearch.services.memory_store import InMemoryResearchStore
from deepresearch.services.research_store import get_store, set_store


def _session(session_id="s1", project_id="p1", user_id=None, created_at=None):
    session = ResearchSession(
        id=session_id,
        project_id=project_id,
        user_id=user_id,
        query="quantum computing",
        config=ResearchConfig(),
    )
    if created_at is not None:
        session.created_at = created_at
    return session


@pytest.mark.asyncio
async def test_sessions_are_copied_in_and_out():
    store = InMemoryResearchStore()
    session = _session()
    await store.create_session(session)

    session.query = "mutated"
    fetched = await store.get_session("s1")
    fetched.stats.sources_used = 99

    again = await store.get_session("s1")
    assert again.query == "quantum computing"
    assert again.stats.sources_used == 0


@pytest.mark.asyncio
async def test_list_sessions_filters_and_paginates_newest_first():
    store = InMemoryResearchStore()
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for i in range(5):
        await store.create_session(_session(f"s{i}", created_at=base + timedelta(days=i)))
    await store.create_session(_session("other", project_id="p2"))
    await store.create_session(_session("mine", user_id="u1", created_at=base - timedelta(days=1)))

    page = await store.list_sessions("p1", limit=2, offset=1)
    mine = await store.list_sessions("p1", user_id="u1")

    assert [s.id for s in page] == ["s3", "s2"]
    assert [s.id for s in mine] == ["mine"]


@pytest.mark.asyncio
async def test_update_status_and_stats():
    store = InMemoryResearchStore()
    await store.create_session(_session())
    done = datetime(2024, 1, 2, tzinfo=timezone.utc)

    await store.update_session_status("s1", SessionStatus.FAILED, error="boom")
    await store.update_session_status("s1", SessionStatus.COMPLETED, completed_at=done)
    await store.update_session_stats("s1", sources_used=3, duration_ms=1200)

    session = await store.get_session("s1")
    assert session.status == SessionStatus.COMPLETED
    assert session.error is None
    assert session.completed_at == done
    assert session.stats.sources_used == 3
    assert session.stats.duration_ms == 1200

    with pytest.raises(ValueError):
        await store.update_session_stats("s1", bogus=1)


@pytest.mark.asyncio
async def test_fact_source_links_are_unique():
    store = InMemoryResearchStore()
    await store.add_fact(Fact(id="f1", session_id="s1", statement="s", source_ids=["a", "a"]))

    assert await store.link_fact_source("f1", "b") is True
    assert await store.link_fact_source("f1", "b") is False
    assert await store.link_fact_source("missing", "b") is False
    (fact,) = await store.list_facts("s1")
    assert fact.source_ids == ["a", "b"]


@pytest.mark.asyncio
async def test_update_fact_clamps_confidence():
    store = InMemoryResearchStore()
    await store.add_fact(Fact(id="f1", session_id="s1", statement="s"))

    await store.update_fact("f1", confidence=1.4, verification_status=VerificationStatus.VERIFIED)

    (fact,) = await store.list_facts("s1")
    assert fact.confidence == 1.0
    assert fact.verification_status == VerificationStatus.VERIFIED


@pytest.mark.asyncio
async def test_relationships_require_existing_endpoints():
    store = InMemoryResearchStore()
    await store.add_knowledge_node(KnowledgeNode(id="n1", session_id="s1", entity="IBM", entity_type="organization"))

    with pytest.raises(KeyError):
        await store.add_knowledge_relationship(
            KnowledgeRelationship(id="r1", session_id="s1", source_id="n1", target_id="nope", relation_type="x")
        )


@pytest.mark.asyncio
async def test_save_report_keeps_the_first_report():
    store = InMemoryResearchStore()

    first = await store.save_report(Report(session_id="s1", title="First", abstract=""))
    second = await store.save_report(Report(session_id="s1", title="Second", abstract=""))

    assert first.title == "First"
    assert second.title == "First"


@pytest.mark.asyncio
async def test_delete_session_cascades():
    store = InMemoryResearchStore()
    await store.create_session(_session())
    await store.add_source(Source(id="src", session_id="s1", url="u", title="t", content="c", provider="p"))
    await store.add_fact(Fact(id="f1", session_id="s1", statement="s"))
    await store.add_contradiction(
        Contradiction(id="c1", session_id="s1", fact_id_1="f1", fact_id_2="f1", explanation="e")
    )
    await store.add_follow_up(FollowUpQuestion(id="q1", session_id="s1", question="Why?"))
    await store.save_report(Report(session_id="s1", title="t", abstract=""))
    await store.append_event(ResearchEvent(session_id="s1", event=EventType.PROGRESS))

    assert await store.delete_session("s1") is True
    assert await store.delete_session("s1") is False
    assert await store.get_session("s1") is None
    assert await store.list_sources("s1") == []
    assert await store.list_facts("s1") == []
    assert await store.list_contradictions("s1") == []
    assert await store.list_follow_ups("s1") == []
    assert await store.get_report("s1") is None
    assert await store.list_events("s1") == []


@pytest.mark.asyncio
async def test_list_events_after_cursor_with_limit():
    store = InMemoryResearchStore()
    ids = [
        (await store.append_event(ResearchEvent(session_id="s1", event=EventType.PROGRESS, data={"i": i}))).id
        for i in range(5)
    ]
    await store.append_event(ResearchEvent(session_id="s2", event=EventType.PROGRESS))

    events = await store.list_events("s1", after_id=ids[1], limit=2)

    assert [e.data["i"] for e in events] == [2, 3]


def test_get_store_honours_backend(monkeypatch):
    from deepresearch.config import settings

    set_store(None)
    monkeypatch.setattr(settings, "store_backend", "memory")
    try:
        assert isinstance(get_store(), InMemoryResearchStore)
        monkeypatch.setattr(settings, "store_backend", "sqlite")
        set_store(None)
        with pytest.raises(ValueError):
            get_store()
    finally:
        set_store(None)
