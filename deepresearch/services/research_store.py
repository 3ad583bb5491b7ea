from __future__ import annotations

from datetime import datetime
from typing import Protocol

from deepresearch.config import settings
from deepresearch.models.events import ResearchEvent
from deepresearch.models.research import (
    Contradiction,
    Fact,
    FollowUpQuestion,
    KnowledgeNode,
    KnowledgeRelationship,
    Report,
    ResearchSession,
    SessionStatus,
    Source,
    VerificationStatus,
)

SESSION_STAT_FIELDS = frozenset(
    {"sources_searched", "sources_used", "facts_extracted", "contradictions_found", "duration_ms"}
)


class ResearchStore(Protocol):
    """Durable state for sessions and every artifact they produce."""

    # Sessions
    async def create_session(self, session: ResearchSession) -> ResearchSession: ...
    async def get_session(self, session_id: str) -> ResearchSession | None: ...
    async def list_sessions(
        self,
        project_id: str,
        *,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ResearchSession]: ...
    async def delete_session(self, session_id: str) -> bool: ...
    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        error: str | None = None,
        completed_at: datetime | None = None,
    ) -> None: ...
    async def update_session_stats(self, session_id: str, **stats: int) -> None: ...

    # Sources
    async def add_source(self, source: Source) -> Source: ...
    async def list_sources(
        self,
        session_id: str,
        *,
        order_by: str = "created",
        limit: int | None = None,
    ) -> list[Source]: ...

    # Facts
    async def add_fact(self, fact: Fact) -> Fact: ...
    async def link_fact_source(self, fact_id: str, source_id: str) -> bool: ...
    async def update_fact(
        self,
        fact_id: str,
        *,
        confidence: float | None = None,
        verification_status: VerificationStatus | None = None,
        verification_count: int | None = None,
    ) -> None: ...
    async def list_facts(
        self,
        session_id: str,
        *,
        order_by: str = "created",
        limit: int | None = None,
    ) -> list[Fact]: ...

    # Contradictions
    async def add_contradiction(self, contradiction: Contradiction) -> Contradiction: ...
    async def list_contradictions(self, session_id: str) -> list[Contradiction]: ...

    # Knowledge graph
    async def add_knowledge_node(self, node: KnowledgeNode) -> KnowledgeNode: ...
    async def add_knowledge_relationship(
        self, relationship: KnowledgeRelationship
    ) -> KnowledgeRelationship: ...
    async def list_knowledge_nodes(self, session_id: str) -> list[KnowledgeNode]: ...

    # Follow-ups
    async def add_follow_up(self, follow_up: FollowUpQuestion) -> FollowUpQuestion: ...
    async def list_follow_ups(self, session_id: str) -> list[FollowUpQuestion]: ...

    # Reports
    async def save_report(self, report: Report) -> Report: ...
    async def get_report(self, session_id: str) -> Report | None: ...

    # Events
    async def append_event(self, event: ResearchEvent) -> ResearchEvent: ...
    async def list_events(
        self,
        session_id: str,
        *,
        after_id: int | None = None,
        limit: int = 10,
    ) -> list[ResearchEvent]: ...

    async def close(self) -> None: ...


_store: ResearchStore | None = None


def get_store() -> ResearchStore:
    global _store
    if _store is None:
        backend = settings.store_backend.lower().strip()
        if backend == "postgres":
            from deepresearch.services.database import PostgresResearchStore

            _store = PostgresResearchStore(settings.database_url)
        elif backend == "memory":
            from deepresearch.services.memory_store import InMemoryResearchStore

            _store = InMemoryResearchStore()
        else:
            raise ValueError(f"Unsupported STORE_BACKEND: {settings.store_backend}")
    return _store


def set_store(store: ResearchStore | None) -> None:
    global _store
    _store = store
