from __future__ import annotations

import pytest

from fakes import (
    EXCLUDED,
    STUDY_A,
    STUDY_B,
    FakeExtractor,
    FakeProvider,
    ScriptedGenerator,
    make_engine,
    search_results,
)
from deepresearch.agents.research_engine import DeepResearchEngine
from deepresearch.models.errors import (
    ReportGenerationError,
    ReportNotFoundError,
    SessionNotFoundError,
    UnsupportedExportFormatError,
)
from deepresearch.models.events import EventType
from deepresearch.models.research import (
    ResearchConfig,
    ResearchDepth,
    SessionStatus,
    VerificationStatus,
)
from deepresearch.services.memory_store import InMemoryResearchStore
from deepresearch.tools.search_orchestrator import SearchOrchestrator


async def _run(engine, **config):
    session = await engine.start_research(
        "How many people took part in the study?",
        "p1",
        config=ResearchConfig(excluded_domains=["spam.example.net"], **config),
    )
    await engine.wait_for_background_tasks()
    return session


@pytest.mark.asyncio
async def test_start_research_returns_immediately_in_researching_state():
    engine = make_engine()

    session = await engine.start_research("quantum computing", "p1", config={"depth": "quick"})

    assert session.status == SessionStatus.RESEARCHING
    assert session.config.depth == ResearchDepth.QUICK
    assert session.config.max_sources == 10
    await engine.wait_for_background_tasks()


@pytest.mark.asyncio
async def test_full_session_runs_every_phase():
    generator = ScriptedGenerator()
    engine = make_engine(generator)

    session = await _run(engine)
    detail = await engine.get_session(session.id)

    assert detail.session.status == SessionStatus.COMPLETED
    assert detail.session.completed_at is not None
    stats = detail.session.stats
    assert stats.sources_searched == 4
    assert stats.sources_used == 2
    assert stats.facts_extracted == 3
    assert stats.contradictions_found == 1
    assert stats.duration_ms >= 0

    urls = {s.url for s in detail.sources}
    assert urls == {STUDY_A, STUDY_B}
    assert EXCLUDED not in engine.extractor.requested
    assert engine.extractor.requested.count(STUDY_A) == 1
    by_url = {s.url: s for s in detail.sources}
    assert by_url[STUDY_B].title == "News coverage"
    assert by_url[STUDY_A].author == "Dr. Rivera"
    assert 0.0 <= by_url[STUDY_A].credibility.overall <= 1.0

    statuses = {f.statement: f.verification_status for f in detail.facts}
    assert statuses["The study had 500 participants"] == VerificationStatus.CONTRADICTED
    assert statuses["The study had 50 participants"] == VerificationStatus.CONTRADICTED
    assert statuses["The trial lasted two years."] == VerificationStatus.UNVERIFIED
    assert len(await engine.list_contradictions(session.id)) == 1

    assert {n.entity for n in detail.knowledge_graph} == {"Study", "Participants"}
    assert [q.question for q in detail.follow_ups][0] == "How many participants completed the study?"
    assert detail.report.title == "Participant counts in the study"
    assert detail.report.bibliography[0].startswith("Dr. Rivera. (n.d.). Journal study.")

    assert generator.callers()[-1] == "report"


@pytest.mark.asyncio
async def test_session_events_trace_the_state_machine():
    engine = make_engine()

    session = await _run(engine)
    events = await engine.store.list_events(session.id, limit=1000)

    statuses = [e.data["status"] for e in events if e.event == EventType.STATUS_CHANGE]
    assert statuses == ["researching", "analyzing", "synthesizing", "completed"]
    kinds = {e.event for e in events}
    assert {
        EventType.SOURCE_FOUND,
        EventType.FACT_EXTRACTED,
        EventType.CONTRADICTION_DETECTED,
        EventType.PROGRESS,
    } <= kinds
    phases = [e.data["phase"] for e in events if e.event == EventType.PROGRESS]
    assert phases == [
        "search",
        "extract",
        "facts",
        "verification",
        "knowledge_graph",
        "contradictions",
        "follow_ups",
    ]
    ids = [e.id for e in events]
    assert ids == sorted(ids)

    streamed = [e async for e in engine.stream_research(session.id)]
    assert [e.id for e in streamed] == ids


@pytest.mark.asyncio
async def test_report_is_only_generated_on_request_when_disabled():
    generator = ScriptedGenerator()
    engine = make_engine(generator)

    session = await _run(engine, generate_report=False)

    detail = await engine.get_session(session.id)
    assert detail.session.status == SessionStatus.COMPLETED
    assert detail.report is None
    assert "report" not in generator.callers()
    with pytest.raises(ReportNotFoundError):
        await engine.export_report(session.id, "md")

    report, created = await engine.ensure_report(session.id)
    again, created_again = await engine.ensure_report(session.id)

    assert created is True
    assert created_again is False
    assert again.title == report.title
    assert generator.callers().count("report") == 1
    body, content_type = await engine.export_report(session.id, "html")
    assert content_type == "text/html"
    assert "Participant counts in the study" in body


@pytest.mark.asyncio
async def test_export_checks_format_before_session():
    engine = make_engine()

    with pytest.raises(UnsupportedExportFormatError) as invalid:
        await engine.export_report("missing", "rtf")
    assert invalid.value.known is False

    with pytest.raises(SessionNotFoundError):
        await engine.export_report("missing", "pdf")

    session = await _run(engine)
    with pytest.raises(UnsupportedExportFormatError) as pending:
        await engine.export_report(session.id, "docx")
    assert pending.value.known is True


@pytest.mark.asyncio
async def test_failed_search_marks_session_failed():
    class BrokenOrchestrator(SearchOrchestrator):
        async def search_providers(self, provider_names, query, options=None):
            raise RuntimeError("search backend exploded")

    store = InMemoryResearchStore()
    engine = DeepResearchEngine(
        store=store,
        orchestrator=BrokenOrchestrator(providers=[FakeProvider([])]),
        extractor=FakeExtractor({}),
        generator=ScriptedGenerator(),
    )

    session = await engine.start_research("quantum computing", "p1")
    await engine.wait_for_background_tasks()

    failed = await store.get_session(session.id)
    assert failed.status == SessionStatus.FAILED
    assert failed.error == "search backend exploded"
    events = await store.list_events(session.id, limit=100)
    assert events[-1].data["status"] == "failed"
    assert events[-1].data["phase"] == "search"
    assert [e async for e in engine.stream_research(session.id, events[-2].id)] == [events[-1]]


@pytest.mark.asyncio
async def test_generation_failures_degrade_without_failing_the_session():
    class SilentGenerator(ScriptedGenerator):
        async def generate(self, prompt, *, max_tokens=1000, caller="research"):
            if caller in ("knowledge_graph", "follow_ups", "contradiction_check"):
                raise RuntimeError("model overloaded")
            return await super().generate(prompt, max_tokens=max_tokens, caller=caller)

    engine = make_engine(SilentGenerator())

    session = await _run(engine)
    detail = await engine.get_session(session.id)

    assert detail.session.status == SessionStatus.COMPLETED
    assert detail.knowledge_graph == []
    assert detail.follow_ups == []
    assert detail.session.stats.contradictions_found == 0
    assert detail.report is not None


@pytest.mark.asyncio
async def test_unparseable_report_still_completes_the_session():
    generator = ScriptedGenerator(report_reply="Sorry, here is prose, no JSON.")
    engine = make_engine(generator)

    session = await _run(engine)
    detail = await engine.get_session(session.id)

    assert detail.session.status == SessionStatus.COMPLETED
    assert detail.session.error is None
    assert detail.report is None
    assert len(detail.facts) == 3

    with pytest.raises(ReportGenerationError, match="Failed to parse report"):
        await engine.ensure_report(session.id)


@pytest.mark.asyncio
async def test_store_failure_still_marks_the_session_failed():
    class FlakyStatsStore(InMemoryResearchStore):
        async def update_session_stats(self, session_id, **stats):
            raise RuntimeError("stats table locked")

    store = FlakyStatsStore()
    engine = make_engine(store=store)

    session = await _run(engine)

    failed = await store.get_session(session.id)
    assert failed.status == SessionStatus.FAILED
    assert failed.error == "stats table locked"
    events = await store.list_events(session.id, limit=100)
    assert events[-1].data["status"] == "failed"


@pytest.mark.asyncio
async def test_deep_dive_reruns_a_quick_pass_on_the_same_session():
    provider = FakeProvider(search_results())
    generator = ScriptedGenerator()
    engine = make_engine(generator, provider=provider)
    session = await _run(engine)

    updated = await engine.deep_dive(session.id, "Who funded the study?")
    assert updated.status == SessionStatus.RESEARCHING
    await engine.wait_for_background_tasks()

    detail = await engine.get_session(session.id)
    assert provider.queries[-1] == "Who funded the study?"
    assert detail.session.status == SessionStatus.COMPLETED
    assert generator.callers().count("report") == 1
    assert sorted(s.url for s in detail.sources) == sorted([STUDY_A, STUDY_B])
    assert detail.session.stats.sources_used == 2
    assert EXCLUDED not in engine.extractor.requested
    assert engine.extractor.requested.count(STUDY_A) == 1
    events = await engine.store.list_events(session.id, limit=1000)
    assert any(e.data.get("deep_dive") == "Who funded the study?" for e in events)

    with pytest.raises(SessionNotFoundError):
        await engine.deep_dive("missing", "anything")


@pytest.mark.asyncio
async def test_list_and_delete_sessions():
    engine = make_engine()
    session = await _run(engine)

    listed = await engine.list_sessions("p1")
    assert [s.id for s in listed] == [session.id]

    assert await engine.delete_session(session.id) is True
    assert await engine.get_session(session.id) is None
    assert await engine.delete_session(session.id) is False
