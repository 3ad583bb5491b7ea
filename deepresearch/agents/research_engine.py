from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Coroutine

from deepresearch.config import settings
from deepresearch.llm_client import TextGenerator, text_generator
from deepresearch.models.errors import (
    ReportGenerationError,
    ReportNotFoundError,
    SessionNotFoundError,
    UnsupportedExportFormatError,
)
from deepresearch.models.events import ResearchEvent
from deepresearch.models.research import (
    Contradiction,
    Fact,
    FollowUpQuestion,
    KnowledgeNode,
    Report,
    ReportFormat,
    ResearchConfig,
    ResearchDepth,
    ResearchSession,
    SessionDetail,
    SessionStatus,
    Source,
    VerificationStatus,
    utcnow,
)
from deepresearch.research_core.contradictions import detect_contradictions
from deepresearch.research_core.credibility import score_credibility
from deepresearch.research_core.export import export_report
from deepresearch.research_core.facts import cross_verify, extract_fact_candidates
from deepresearch.research_core.follow_ups import generate_follow_ups
from deepresearch.research_core.knowledge_graph import build_knowledge_graph
from deepresearch.research_core.report import ReportSynthesizer
from deepresearch.services import logger as log_service
from deepresearch.services import streaming
from deepresearch.services.event_log import EventLog
from deepresearch.services.research_store import ResearchStore, get_store
from deepresearch.tools.content_extractor import ContentExtractor
from deepresearch.tools.search_orchestrator import SearchOrchestrator, normalize_url
from deepresearch.tools.search_provider import SearchOptions, SearchResult

EXPORT_FORMATS = ("pdf", "docx", "md", "html")
DEEP_DIVE_MAX_SOURCES = 10
UNTITLED = "Untitled"


@dataclass
class SessionContext:
    """Working state threaded through the phases of one research run."""

    session_id: str
    query: str
    config: ResearchConfig
    started_at: float = field(default_factory=time.monotonic)
    phase: str = "init"
    results: list[SearchResult] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    knowledge_graph: list[KnowledgeNode] = field(default_factory=list)
    contradictions: list[Contradiction] = field(default_factory=list)
    follow_ups: list[FollowUpQuestion] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


class DeepResearchEngine:
    """Runs research sessions through their seven phases.

    Flow:
      1. Search every enabled provider and trim to the source budget
      2. Extract content, drop low-quality pages, score credibility
      3. Delegate fact candidates per source
      4. Cross-verify facts against the other sources
      5. Build a knowledge graph over the top facts
      6. Judge neighbouring facts for contradictions
      7. Generate follow-ups, then the report when requested

    Each session runs as its own background task and publishes progress
    through the event log.
    """

    def __init__(
        self,
        store: ResearchStore | None = None,
        orchestrator: SearchOrchestrator | None = None,
        extractor: ContentExtractor | None = None,
        generator: TextGenerator | None = None,
        fast_generator: TextGenerator | None = None,
    ):
        self.store = store or get_store()
        self.orchestrator = orchestrator or SearchOrchestrator()
        self.extractor = extractor or ContentExtractor()
        self._generator = generator
        self._fast_generator = fast_generator
        self.events = EventLog(self.store)
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def generator(self) -> TextGenerator:
        if self._generator is None:
            self._generator = text_generator()
        return self._generator

    @property
    def fast_generator(self) -> TextGenerator:
        if self._fast_generator is None:
            self._fast_generator = (
                text_generator(fast=True) if settings.fast_model else self.generator
            )
        return self._fast_generator

    # --- Background tasks ---

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, session_id: str, label: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._supervise(coro, session_id=session_id, label=label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _supervise(self, coro: Coroutine[Any, Any, Any], *, session_id: str, label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_service.log_event(
                event_type="research_task_failed",
                message=f"Background {label} failed",
                session_id=session_id,
                error=str(e),
            )

    async def wait_for_background_tasks(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Session lifecycle ---

    async def start_research(
        self,
        query: str,
        project_id: str,
        config: ResearchConfig | dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> ResearchSession:
        if not isinstance(config, ResearchConfig):
            config = ResearchConfig.from_dict(config)

        session = await self.store.create_session(
            ResearchSession(
                id=str(uuid.uuid4()),
                project_id=project_id,
                user_id=user_id,
                query=query,
                config=config,
                status=SessionStatus.RESEARCHING,
            )
        )
        await self.events.emit(
            streaming.status_change(session.id, SessionStatus.RESEARCHING, query=query)
        )
        log_service.log_research_step(
            session_id=session.id,
            step_type="session",
            status="started",
            data={"query": query[:200], "depth": config.depth.value, "max_sources": config.max_sources},
        )
        self._spawn(
            self.conduct_research(session.id, query, config),
            session_id=session.id,
            label="research",
        )
        return session

    async def conduct_research(
        self,
        session_id: str,
        query: str,
        config: ResearchConfig,
    ) -> SessionContext:
        ctx = SessionContext(session_id=session_id, query=query, config=config)
        try:
            await self._search_phase(ctx)
            await self._set_status(ctx, SessionStatus.ANALYZING)
            await self._extract_phase(ctx)
            await self._fact_phase(ctx)
            await self._verification_phase(ctx)
            await self._knowledge_graph_phase(ctx)
            await self._contradiction_phase(ctx)
            await self._follow_up_phase(ctx)
            await self._set_status(ctx, SessionStatus.SYNTHESIZING)
            if config.generate_report:
                ctx.phase = "report"
                try:
                    await self.generate_report(session_id)
                except ReportGenerationError as e:
                    # The session still completes; POST /report can retry.
                    log_service.log_research_step(
                        session_id=session_id,
                        step_type="report",
                        status="failed",
                        data={"error": str(e)},
                    )

            ctx.phase = "complete"
            duration_ms = ctx.elapsed_ms
            await self.store.update_session_stats(session_id, duration_ms=duration_ms)
            await self.store.update_session_status(
                session_id, SessionStatus.COMPLETED, completed_at=utcnow()
            )
            await self.events.emit(
                streaming.status_change(
                    session_id, SessionStatus.COMPLETED, duration_ms=duration_ms
                )
            )
            log_service.log_research_step(
                session_id=session_id,
                step_type="session",
                status="completed",
                data={
                    "duration_ms": duration_ms,
                    "sources": len(ctx.sources),
                    "facts": len(ctx.facts),
                    "contradictions": len(ctx.contradictions),
                },
            )
            return ctx
        except Exception as e:
            await self._fail(ctx, e)
            raise

    async def _fail(self, ctx: SessionContext, error: Exception) -> None:
        duration_ms = ctx.elapsed_ms
        log_service.log_research_step(
            session_id=ctx.session_id,
            step_type=ctx.phase,
            status="failed",
            data={"error": str(error), "duration_ms": duration_ms},
        )
        # Terminal status first; the stats write is best effort.
        try:
            await self.store.update_session_status(
                ctx.session_id, SessionStatus.FAILED, error=str(error)
            )
            await self.store.update_session_stats(ctx.session_id, duration_ms=duration_ms)
        except Exception as e:
            log_service.log_db_operation(
                operation="mark_failed",
                table="research_sessions",
                status="failed",
                details=ctx.session_id,
                error=str(e),
            )
        await self.events.emit(
            streaming.status_change(
                ctx.session_id,
                SessionStatus.FAILED,
                error=str(error),
                phase=ctx.phase,
                duration_ms=duration_ms,
            )
        )

    async def _set_status(self, ctx: SessionContext, status: SessionStatus) -> None:
        await self.store.update_session_status(ctx.session_id, status)
        await self.events.emit(streaming.status_change(ctx.session_id, status))

    async def _progress(self, ctx: SessionContext, **data: Any) -> None:
        await self.events.emit(streaming.progress(ctx.session_id, ctx.phase, **data))
        log_service.log_research_step(
            session_id=ctx.session_id,
            step_type=ctx.phase,
            status="completed",
            data=data,
        )

    # --- Phases ---

    async def _search_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "search"
        config = ctx.config
        options = SearchOptions(
            max_results=config.max_sources,
            date_range=config.date_range,
            domains=list(config.required_domains),
        )
        providers = self.orchestrator.providers_for_config(config)
        results = await self.orchestrator.search_providers(providers, ctx.query, options)

        excluded = [d.lower() for d in config.excluded_domains if d.strip()]
        if excluded:
            results = [r for r in results if not any(d in r.url.lower() for d in excluded)]

        await self.store.update_session_stats(ctx.session_id, sources_searched=len(results))
        ctx.results = results[: config.max_sources]
        await self._progress(ctx, providers=providers, results=len(ctx.results))

    async def _extract_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "extract"
        known = await self.store.list_sources(ctx.session_id)
        seen = {normalize_url(s.url) for s in known}
        fresh: list[SearchResult] = []
        for result in ctx.results:
            key = normalize_url(result.url)
            if key not in seen:
                seen.add(key)
                fresh.append(result)
        ctx.results = fresh

        extracted = await self.extractor.extract_batch(
            [r.url for r in ctx.results],
            concurrency=settings.extract_concurrency,
        )

        dropped = 0
        for result in ctx.results:
            content = extracted.get(result.url)
            if content is None or content.quality_score < settings.min_source_quality:
                dropped += 1
                continue

            title = content.title if content.title and content.title != UNTITLED else result.title
            source = await self.store.add_source(
                Source(
                    id=str(uuid.uuid4()),
                    session_id=ctx.session_id,
                    url=result.url,
                    title=title or UNTITLED,
                    content=content.content,
                    excerpt=content.excerpt,
                    author=content.author or result.author,
                    publish_date=content.publish_date or result.publish_date,
                    source_type=result.source_type,
                    provider=result.provider,
                    credibility=score_credibility(result, content),
                )
            )
            ctx.sources.append(source)
            await self.events.emit(streaming.source_found(ctx.session_id, source))

        await self.store.update_session_stats(
            ctx.session_id, sources_used=len(known) + len(ctx.sources)
        )
        await self._progress(ctx, sources_used=len(ctx.sources), dropped=dropped)

    async def _fact_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "facts"
        for source in ctx.sources:
            statements = await extract_fact_candidates(self.generator, source)
            for statement in statements:
                fact = await self.store.add_fact(
                    Fact(
                        id=str(uuid.uuid4()),
                        session_id=ctx.session_id,
                        statement=statement,
                        confidence=0.7,
                        verification_status=VerificationStatus.UNVERIFIED,
                        verification_count=1,
                        source_ids=[source.id],
                    )
                )
                ctx.facts.append(fact)
                await self.events.emit(streaming.fact_extracted(ctx.session_id, fact, source.id))
        await self._progress(ctx, facts=len(ctx.facts))

    async def _verification_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "verification"
        await cross_verify(self.store, ctx.facts, ctx.sources)
        await self.store.update_session_stats(ctx.session_id, facts_extracted=len(ctx.facts))
        verified = sum(1 for f in ctx.facts if f.verification_status == VerificationStatus.VERIFIED)
        await self._progress(ctx, facts=len(ctx.facts), verified=verified)

    async def _knowledge_graph_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "knowledge_graph"
        ctx.knowledge_graph = await build_knowledge_graph(
            self.store, self.generator, ctx.session_id, ctx.facts
        )
        await self._progress(
            ctx,
            nodes=len(ctx.knowledge_graph),
            relationships=sum(len(n.relationships) for n in ctx.knowledge_graph),
        )

    async def _contradiction_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "contradictions"
        async for contradiction, fact_1, fact_2 in detect_contradictions(
            self.store, self.fast_generator, ctx.session_id, ctx.facts
        ):
            ctx.contradictions.append(contradiction)
            await self.events.emit(
                streaming.contradiction_detected(ctx.session_id, contradiction, fact_1, fact_2)
            )
        await self.store.update_session_stats(
            ctx.session_id, contradictions_found=len(ctx.contradictions)
        )
        await self._progress(ctx, contradictions=len(ctx.contradictions))

    async def _follow_up_phase(self, ctx: SessionContext) -> None:
        ctx.phase = "follow_ups"
        ctx.follow_ups = await generate_follow_ups(
            self.store, self.generator, ctx.session_id, ctx.query, ctx.facts
        )
        await self._progress(ctx, follow_ups=len(ctx.follow_ups))

    # --- Reports ---

    async def ensure_report(self, session_id: str) -> tuple[Report, bool]:
        """Return ``(report, created)``; an existing report is never regenerated."""
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        existing = await self.store.get_report(session_id)
        if existing is not None:
            return existing, False
        report = await ReportSynthesizer(self.store, self.generator).synthesize(session)
        return report, True

    async def generate_report(self, session_id: str) -> Report:
        report, _ = await self.ensure_report(session_id)
        return report

    async def export_report(self, session_id: str, export_format: str) -> tuple[str, str]:
        fmt = (export_format or "").lower()
        if fmt not in EXPORT_FORMATS:
            raise UnsupportedExportFormatError(export_format)
        if await self.store.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)
        report = await self.store.get_report(session_id)
        if report is None:
            raise ReportNotFoundError(session_id)
        return export_report(report, fmt)

    # --- Follow-up research ---

    async def deep_dive(self, session_id: str, question: str) -> ResearchSession:
        """Rerun a quick pass on the same session with ``question`` as the query."""
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        config = ResearchConfig(
            depth=ResearchDepth.QUICK,
            max_sources=DEEP_DIVE_MAX_SOURCES,
            include_academic=session.config.include_academic,
            include_news=session.config.include_news,
            include_forums=session.config.include_forums,
            date_range=session.config.date_range,
            required_domains=list(session.config.required_domains),
            excluded_domains=list(session.config.excluded_domains),
            citation_style=session.config.citation_style,
            generate_report=False,
            report_format=ReportFormat.SUMMARY,
        )
        await self.store.update_session_status(session_id, SessionStatus.RESEARCHING)
        await self.events.emit(
            streaming.status_change(session_id, SessionStatus.RESEARCHING, deep_dive=question)
        )
        log_service.log_research_step(
            session_id=session_id,
            step_type="deep_dive",
            status="started",
            data={"question": question[:200]},
        )
        self._spawn(
            self.conduct_research(session_id, question, config),
            session_id=session_id,
            label="deep dive",
        )
        return await self.store.get_session(session_id) or session

    # --- Queries ---

    async def get_session(self, session_id: str) -> SessionDetail | None:
        session = await self.store.get_session(session_id)
        if session is None:
            return None
        sources, facts, nodes, follow_ups, report = await asyncio.gather(
            self.store.list_sources(session_id),
            self.store.list_facts(session_id),
            self.store.list_knowledge_nodes(session_id),
            self.store.list_follow_ups(session_id),
            self.store.get_report(session_id),
        )
        return SessionDetail(
            session=session,
            sources=sources,
            facts=facts,
            knowledge_graph=nodes,
            follow_ups=follow_ups,
            report=report,
        )

    async def list_sessions(
        self,
        project_id: str,
        *,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ResearchSession]:
        return await self.store.list_sessions(project_id, user_id=user_id, limit=limit, offset=offset)

    async def list_contradictions(self, session_id: str) -> list[Contradiction]:
        return await self.store.list_contradictions(session_id)

    async def delete_session(self, session_id: str) -> bool:
        deleted = await self.store.delete_session(session_id)
        if deleted:
            log_service.log_event(
                event_type="research_session_deleted",
                message="Research session deleted",
                session_id=session_id,
            )
        return deleted

    async def stream_research(
        self,
        session_id: str,
        last_event_id: int | None = None,
    ) -> AsyncGenerator[ResearchEvent, None]:
        async for event in self.events.follow(session_id, last_event_id):
            yield event


_engine: DeepResearchEngine | None = None


def get_engine() -> DeepResearchEngine:
    global _engine
    if _engine is None:
        _engine = DeepResearchEngine()
    return _engine


def set_engine(engine: DeepResearchEngine | None) -> None:
    global _engine
    _engine = engine
