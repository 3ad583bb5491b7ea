from __future__ import annotations

import copy
import itertools
from datetime import datetime

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
    clamp01,
    utcnow,
)
from deepresearch.services.research_store import SESSION_STAT_FIELDS


class InMemoryResearchStore:
    """Process-local store with the same semantics as the Postgres store.

    Values are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ResearchSession] = {}
        self._sources: dict[str, Source] = {}
        self._facts: dict[str, Fact] = {}
        self._contradictions: dict[str, Contradiction] = {}
        self._nodes: dict[str, KnowledgeNode] = {}
        self._follow_ups: dict[str, FollowUpQuestion] = {}
        self._reports: dict[str, Report] = {}
        self._events: list[ResearchEvent] = []
        self._event_ids = itertools.count(1)

    # --- Sessions ---

    async def create_session(self, session: ResearchSession) -> ResearchSession:
        self._sessions[session.id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    async def get_session(self, session_id: str) -> ResearchSession | None:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def list_sessions(
        self,
        project_id: str,
        *,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ResearchSession]:
        matches = [
            s
            for s in self._sessions.values()
            if s.project_id == project_id and (user_id is None or s.user_id == user_id)
        ]
        matches.sort(key=lambda s: s.created_at, reverse=True)
        return copy.deepcopy(matches[offset : offset + limit])

    async def delete_session(self, session_id: str) -> bool:
        if self._sessions.pop(session_id, None) is None:
            return False
        for table in (self._sources, self._facts, self._contradictions, self._nodes, self._follow_ups):
            for key in [k for k, v in table.items() if v.session_id == session_id]:
                del table[key]
        self._reports.pop(session_id, None)
        self._events = [e for e in self._events if e.session_id != session_id]
        return True

    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        error: str | None = None,
        completed_at: datetime | None = None,
    ) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.status = SessionStatus(status)
        session.error = error
        if completed_at is not None:
            session.completed_at = completed_at
        session.updated_at = utcnow()

    async def update_session_stats(self, session_id: str, **stats: int) -> None:
        unknown = set(stats) - SESSION_STAT_FIELDS
        if unknown:
            raise ValueError(f"Unknown session stats: {sorted(unknown)}")
        session = self._sessions.get(session_id)
        if session is None:
            return
        for key, value in stats.items():
            setattr(session.stats, key, int(value))
        session.updated_at = utcnow()

    # --- Sources ---

    async def add_source(self, source: Source) -> Source:
        self._sources[source.id] = copy.deepcopy(source)
        return copy.deepcopy(source)

    async def list_sources(
        self,
        session_id: str,
        *,
        order_by: str = "created",
        limit: int | None = None,
    ) -> list[Source]:
        rows = [s for s in self._sources.values() if s.session_id == session_id]
        if order_by == "credibility":
            rows.sort(key=lambda s: s.credibility.overall, reverse=True)
        return copy.deepcopy(rows[:limit] if limit is not None else rows)

    # --- Facts ---

    async def add_fact(self, fact: Fact) -> Fact:
        stored = copy.deepcopy(fact)
        stored.source_ids = list(dict.fromkeys(stored.source_ids))
        self._facts[fact.id] = stored
        return copy.deepcopy(stored)

    async def link_fact_source(self, fact_id: str, source_id: str) -> bool:
        fact = self._facts.get(fact_id)
        if fact is None or source_id in fact.source_ids:
            return False
        fact.source_ids.append(source_id)
        return True

    async def update_fact(
        self,
        fact_id: str,
        *,
        confidence: float | None = None,
        verification_status: VerificationStatus | None = None,
        verification_count: int | None = None,
    ) -> None:
        fact = self._facts.get(fact_id)
        if fact is None:
            return
        if confidence is not None:
            fact.confidence = clamp01(confidence)
        if verification_status is not None:
            fact.verification_status = VerificationStatus(verification_status)
        if verification_count is not None:
            fact.verification_count = int(verification_count)

    async def list_facts(
        self,
        session_id: str,
        *,
        order_by: str = "created",
        limit: int | None = None,
    ) -> list[Fact]:
        rows = [f for f in self._facts.values() if f.session_id == session_id]
        if order_by == "confidence":
            rows.sort(key=lambda f: f.confidence, reverse=True)
        return copy.deepcopy(rows[:limit] if limit is not None else rows)

    # --- Contradictions ---

    async def add_contradiction(self, contradiction: Contradiction) -> Contradiction:
        self._contradictions[contradiction.id] = copy.deepcopy(contradiction)
        return copy.deepcopy(contradiction)

    async def list_contradictions(self, session_id: str) -> list[Contradiction]:
        return copy.deepcopy(
            [c for c in self._contradictions.values() if c.session_id == session_id]
        )

    # --- Knowledge graph ---

    async def add_knowledge_node(self, node: KnowledgeNode) -> KnowledgeNode:
        stored = copy.deepcopy(node)
        stored.relationships = []
        self._nodes[node.id] = stored
        return copy.deepcopy(stored)

    async def add_knowledge_relationship(
        self, relationship: KnowledgeRelationship
    ) -> KnowledgeRelationship:
        source = self._nodes.get(relationship.source_id)
        if source is None or relationship.target_id not in self._nodes:
            raise KeyError("Relationship endpoints must reference existing nodes")
        source.relationships.append(copy.deepcopy(relationship))
        return copy.deepcopy(relationship)

    async def list_knowledge_nodes(self, session_id: str) -> list[KnowledgeNode]:
        return copy.deepcopy([n for n in self._nodes.values() if n.session_id == session_id])

    # --- Follow-ups ---

    async def add_follow_up(self, follow_up: FollowUpQuestion) -> FollowUpQuestion:
        self._follow_ups[follow_up.id] = copy.deepcopy(follow_up)
        return copy.deepcopy(follow_up)

    async def list_follow_ups(self, session_id: str) -> list[FollowUpQuestion]:
        rows = [q for q in self._follow_ups.values() if q.session_id == session_id]
        rows.sort(key=lambda q: q.priority, reverse=True)
        return copy.deepcopy(rows)

    # --- Reports ---

    async def save_report(self, report: Report) -> Report:
        existing = self._reports.get(report.session_id)
        if existing is None:
            self._reports[report.session_id] = copy.deepcopy(report)
            existing = self._reports[report.session_id]
        return copy.deepcopy(existing)

    async def get_report(self, session_id: str) -> Report | None:
        report = self._reports.get(session_id)
        return copy.deepcopy(report) if report else None

    # --- Events ---

    async def append_event(self, event: ResearchEvent) -> ResearchEvent:
        stored = copy.deepcopy(event)
        stored.id = next(self._event_ids)
        self._events.append(stored)
        return copy.deepcopy(stored)

    async def list_events(
        self,
        session_id: str,
        *,
        after_id: int | None = None,
        limit: int = 10,
    ) -> list[ResearchEvent]:
        rows = [
            e
            for e in self._events
            if e.session_id == session_id and (after_id is None or (e.id or 0) > after_id)
        ]
        return copy.deepcopy(rows[:limit])

    async def close(self) -> None:
        return None
