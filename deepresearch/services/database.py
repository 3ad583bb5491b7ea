"""PostgreSQL research store using asyncpg."""

from __future__ import annotations

import json
import time
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID

import asyncpg

from deepresearch.config import settings
from deepresearch.models.events import EventType, ResearchEvent
from deepresearch.models.research import (
    Contradiction,
    Credibility,
    Fact,
    FollowUpQuestion,
    KnowledgeNode,
    KnowledgeRelationship,
    Report,
    ReportSection,
    ResearchConfig,
    ResearchSession,
    SessionStats,
    SessionStatus,
    Source,
    SourceType,
    VerificationStatus,
    clamp01,
)
from deepresearch.services import logger as log_service
from deepresearch.services.research_store import SESSION_STAT_FIELDS

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

_FACT_COLUMNS = """
    f.id, f.session_id, f.statement, f.confidence, f.verification_status,
    f.verification_count, f.extracted_at,
    COALESCE(
        array_agg(fs.source_id ORDER BY fs.created_at) FILTER (WHERE fs.source_id IS NOT NULL),
        '{}'
    ) AS source_ids
"""


def _coerce_json_object(value: Any) -> dict[str, Any]:
    """Normalize JSON-string fields into dictionaries."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def _coerce_json_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _session_from_row(row: asyncpg.Record) -> ResearchSession:
    return ResearchSession(
        id=str(row["id"]),
        project_id=row["project_id"],
        user_id=row["user_id"],
        query=row["query"],
        status=SessionStatus(row["status"]),
        config=ResearchConfig.from_dict(_coerce_json_object(row["config"])),
        stats=SessionStats(
            sources_searched=row["sources_searched"],
            sources_used=row["sources_used"],
            facts_extracted=row["facts_extracted"],
            contradictions_found=row["contradictions_found"],
            duration_ms=row["duration_ms"],
        ),
        error=row["error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _source_from_row(row: asyncpg.Record) -> Source:
    return Source(
        id=str(row["id"]),
        session_id=str(row["session_id"]),
        url=row["url"],
        title=row["title"],
        content=row["content"],
        excerpt=row["excerpt"],
        author=row["author"],
        publish_date=row["publish_date"],
        source_type=SourceType(row["source_type"]),
        provider=row["provider"],
        credibility=Credibility(
            authority=row["authority_score"],
            recency=row["recency_score"],
            bias=row["bias_score"],
            overall=row["overall_score"],
        ),
        created_at=row["created_at"],
    )


def _fact_from_row(row: asyncpg.Record) -> Fact:
    return Fact(
        id=str(row["id"]),
        session_id=str(row["session_id"]),
        statement=row["statement"],
        confidence=row["confidence"],
        verification_status=VerificationStatus(row["verification_status"]),
        verification_count=row["verification_count"],
        source_ids=[str(source_id) for source_id in row["source_ids"]],
        extracted_at=row["extracted_at"],
    )


def _report_from_row(row: asyncpg.Record) -> Report:
    sections = [
        ReportSection(
            title=str(item.get("title", "")),
            content=str(item.get("content", "")),
            citations=[str(c) for c in item.get("citations", [])],
        )
        for item in _coerce_json_list(row["sections"])
        if isinstance(item, dict)
    ]
    return Report(
        session_id=str(row["session_id"]),
        title=row["title"],
        abstract=row["abstract"],
        sections=sections,
        key_findings=[str(v) for v in _coerce_json_list(row["key_findings"])],
        limitations=[str(v) for v in _coerce_json_list(row["limitations"])],
        bibliography=[str(v) for v in _coerce_json_list(row["bibliography"])],
        generated_at=row["generated_at"],
    )


def _event_from_row(row: asyncpg.Record) -> ResearchEvent:
    return ResearchEvent(
        id=row["id"],
        session_id=str(row["session_id"]),
        event=EventType(row["event_type"]),
        data=_coerce_json_object(row["data"]),
        created_at=row["created_at"],
    )


class PostgresResearchStore:
    """Research store backed by a lazily created asyncpg pool."""

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url if database_url is not None else settings.database_url
        self._pool: asyncpg.Pool | None = None

    def _db_available(self) -> bool:
        return bool(self.database_url)

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create the database connection pool."""
        if not self._db_available():
            raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=settings.database_min_pool_size,
                max_size=settings.database_max_pool_size,
            )
        return self._pool

    async def close(self) -> None:
        """Close the database connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def init_schema(self) -> None:
        """Create tables and indexes if they are missing."""
        t0 = time.monotonic()
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        log_service.log_db_operation(
            operation="init_schema",
            table="*",
            status="success",
            details=f"{int((time.monotonic() - t0) * 1000)}ms",
        )

    # --- Sessions ---

    async def create_session(self, session: ResearchSession) -> ResearchSession:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO research_sessions
                    (id, project_id, user_id, query, status, config, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                UUID(session.id),
                session.project_id,
                session.user_id,
                session.query,
                SessionStatus(session.status).value,
                json.dumps(session.config.to_dict()),
                session.created_at,
                session.updated_at,
            )
        log_service.log_db_operation(
            operation="insert", table="research_sessions", status="success", details=session.id
        )
        return _session_from_row(row)

    async def get_session(self, session_id: str) -> ResearchSession | None:
        uid = _as_uuid(session_id)
        if uid is None:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM research_sessions WHERE id = $1", uid)
        return _session_from_row(row) if row else None

    async def list_sessions(
        self,
        project_id: str,
        *,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[ResearchSession]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM research_sessions
                WHERE project_id = $1 AND ($2::text IS NULL OR user_id = $2)
                ORDER BY created_at DESC
                LIMIT $3 OFFSET $4
                """,
                project_id,
                user_id,
                limit,
                offset,
            )
        return [_session_from_row(r) for r in rows]

    async def delete_session(self, session_id: str) -> bool:
        uid = _as_uuid(session_id)
        if uid is None:
            return False
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute("DELETE FROM research_sessions WHERE id = $1", uid)
        log_service.log_db_operation(
            operation="delete", table="research_sessions", status="success", details=session_id
        )
        return status.endswith(" 1")

    async def update_session_status(
        self,
        session_id: str,
        status: SessionStatus,
        *,
        error: str | None = None,
        completed_at: datetime | None = None,
    ) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE research_sessions
                SET status = $2, error = $3,
                    completed_at = COALESCE($4, completed_at),
                    updated_at = now()
                WHERE id = $1
                """,
                UUID(session_id),
                SessionStatus(status).value,
                error,
                completed_at,
            )

    async def update_session_stats(self, session_id: str, **stats: int) -> None:
        unknown = set(stats) - SESSION_STAT_FIELDS
        if unknown:
            raise ValueError(f"Unknown session stats: {sorted(unknown)}")
        if not stats:
            return

        set_clause = ", ".join(f"{k} = ${i + 2}" for i, k in enumerate(stats.keys()))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE research_sessions
                SET {set_clause}, updated_at = now()
                WHERE id = $1
                """,
                UUID(session_id),
                *(int(v) for v in stats.values()),
            )

    # --- Sources ---

    async def add_source(self, source: Source) -> Source:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO research_sources
                    (id, session_id, url, title, content, excerpt, author, publish_date,
                     source_type, provider, authority_score, recency_score, bias_score,
                     overall_score, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                RETURNING *
                """,
                UUID(source.id),
                UUID(source.session_id),
                source.url,
                source.title,
                source.content,
                source.excerpt,
                source.author,
                source.publish_date,
                SourceType(source.source_type).value,
                source.provider,
                clamp01(source.credibility.authority),
                clamp01(source.credibility.recency),
                clamp01(source.credibility.bias),
                clamp01(source.credibility.overall),
                source.created_at,
            )
        return _source_from_row(row)

    async def list_sources(
        self,
        session_id: str,
        *,
        order_by: str = "created",
        limit: int | None = None,
    ) -> list[Source]:
        uid = _as_uuid(session_id)
        if uid is None:
            return []
        order = "overall_score DESC, seq" if order_by == "credibility" else "seq"
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM research_sources
                WHERE session_id = $1
                ORDER BY {order}
                LIMIT $2
                """,
                uid,
                limit,
            )
        return [_source_from_row(r) for r in rows]

    # --- Facts ---

    async def add_fact(self, fact: Fact) -> Fact:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO research_facts
                        (id, session_id, statement, confidence, verification_status,
                         verification_count, extracted_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    UUID(fact.id),
                    UUID(fact.session_id),
                    fact.statement,
                    clamp01(fact.confidence),
                    VerificationStatus(fact.verification_status).value,
                    fact.verification_count,
                    fact.extracted_at,
                )
                for source_id in dict.fromkeys(fact.source_ids):
                    await conn.execute(
                        """
                        INSERT INTO research_fact_sources (fact_id, source_id)
                        VALUES ($1, $2)
                        ON CONFLICT DO NOTHING
                        """,
                        UUID(fact.id),
                        UUID(source_id),
                    )
        return replace(fact, source_ids=list(dict.fromkeys(fact.source_ids)))

    async def link_fact_source(self, fact_id: str, source_id: str) -> bool:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                """
                INSERT INTO research_fact_sources (fact_id, source_id)
                VALUES ($1, $2)
                ON CONFLICT DO NOTHING
                """,
                UUID(fact_id),
                UUID(source_id),
            )
        return status.endswith(" 1")

    async def update_fact(
        self,
        fact_id: str,
        *,
        confidence: float | None = None,
        verification_status: VerificationStatus | None = None,
        verification_count: int | None = None,
    ) -> None:
        updates: dict[str, Any] = {}
        if confidence is not None:
            updates["confidence"] = clamp01(confidence)
        if verification_status is not None:
            updates["verification_status"] = VerificationStatus(verification_status).value
        if verification_count is not None:
            updates["verification_count"] = int(verification_count)
        if not updates:
            return

        set_clause = ", ".join(f"{k} = ${i + 2}" for i, k in enumerate(updates.keys()))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"UPDATE research_facts SET {set_clause} WHERE id = $1",
                UUID(fact_id),
                *updates.values(),
            )

    async def list_facts(
        self,
        session_id: str,
        *,
        order_by: str = "created",
        limit: int | None = None,
    ) -> list[Fact]:
        uid = _as_uuid(session_id)
        if uid is None:
            return []
        order = "f.confidence DESC, f.seq" if order_by == "confidence" else "f.seq"
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_FACT_COLUMNS}
                FROM research_facts f
                LEFT JOIN research_fact_sources fs ON fs.fact_id = f.id
                WHERE f.session_id = $1
                GROUP BY f.id
                ORDER BY {order}
                LIMIT $2
                """,
                uid,
                limit,
            )
        return [_fact_from_row(r) for r in rows]

    # --- Contradictions ---

    async def add_contradiction(self, contradiction: Contradiction) -> Contradiction:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_contradictions
                    (id, session_id, fact_id_1, fact_id_2, explanation, severity, created_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                UUID(contradiction.id),
                UUID(contradiction.session_id),
                UUID(contradiction.fact_id_1),
                UUID(contradiction.fact_id_2),
                contradiction.explanation,
                contradiction.severity,
                contradiction.created_at,
            )
        return contradiction

    async def list_contradictions(self, session_id: str) -> list[Contradiction]:
        uid = _as_uuid(session_id)
        if uid is None:
            return []
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM research_contradictions WHERE session_id = $1 ORDER BY created_at",
                uid,
            )
        return [
            Contradiction(
                id=str(r["id"]),
                session_id=str(r["session_id"]),
                fact_id_1=str(r["fact_id_1"]),
                fact_id_2=str(r["fact_id_2"]),
                explanation=r["explanation"],
                severity=r["severity"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # --- Knowledge graph ---

    async def add_knowledge_node(self, node: KnowledgeNode) -> KnowledgeNode:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_knowledge_nodes
                    (id, session_id, entity, entity_type, properties, importance)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                UUID(node.id),
                UUID(node.session_id),
                node.entity,
                node.entity_type,
                json.dumps(node.properties),
                clamp01(node.importance),
            )
        return KnowledgeNode(
            id=node.id,
            session_id=node.session_id,
            entity=node.entity,
            entity_type=node.entity_type,
            properties=dict(node.properties),
            importance=node.importance,
        )

    async def add_knowledge_relationship(
        self, relationship: KnowledgeRelationship
    ) -> KnowledgeRelationship:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_knowledge_relationships
                    (id, session_id, source_node_id, target_node_id, relation_type, strength)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                UUID(relationship.id),
                UUID(relationship.session_id),
                UUID(relationship.source_id),
                UUID(relationship.target_id),
                relationship.relation_type,
                clamp01(relationship.strength),
            )
        return relationship

    async def list_knowledge_nodes(self, session_id: str) -> list[KnowledgeNode]:
        uid = _as_uuid(session_id)
        if uid is None:
            return []
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            node_rows = await conn.fetch(
                "SELECT * FROM research_knowledge_nodes WHERE session_id = $1 ORDER BY seq",
                uid,
            )
            rel_rows = await conn.fetch(
                "SELECT * FROM research_knowledge_relationships WHERE session_id = $1 ORDER BY seq",
                uid,
            )

        nodes = {
            str(r["id"]): KnowledgeNode(
                id=str(r["id"]),
                session_id=str(r["session_id"]),
                entity=r["entity"],
                entity_type=r["entity_type"],
                properties=_coerce_json_object(r["properties"]),
                importance=r["importance"],
            )
            for r in node_rows
        }
        for r in rel_rows:
            node = nodes.get(str(r["source_node_id"]))
            if node is None:
                continue
            node.relationships.append(
                KnowledgeRelationship(
                    id=str(r["id"]),
                    session_id=str(r["session_id"]),
                    source_id=str(r["source_node_id"]),
                    target_id=str(r["target_node_id"]),
                    relation_type=r["relation_type"],
                    strength=r["strength"],
                )
            )
        return list(nodes.values())

    # --- Follow-ups ---

    async def add_follow_up(self, follow_up: FollowUpQuestion) -> FollowUpQuestion:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_follow_ups (id, session_id, question, priority)
                VALUES ($1, $2, $3, $4)
                """,
                UUID(follow_up.id),
                UUID(follow_up.session_id),
                follow_up.question,
                clamp01(follow_up.priority),
            )
        return follow_up

    async def list_follow_ups(self, session_id: str) -> list[FollowUpQuestion]:
        uid = _as_uuid(session_id)
        if uid is None:
            return []
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM research_follow_ups
                WHERE session_id = $1
                ORDER BY priority DESC, created_at
                """,
                uid,
            )
        return [
            FollowUpQuestion(
                id=str(r["id"]),
                session_id=str(r["session_id"]),
                question=r["question"],
                priority=r["priority"],
            )
            for r in rows
        ]

    # --- Reports ---

    async def save_report(self, report: Report) -> Report:
        """Insert the report unless one exists; always return the persisted row."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_reports
                    (session_id, title, abstract, sections, key_findings, limitations,
                     bibliography, word_count, generated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (session_id) DO NOTHING
                """,
                UUID(report.session_id),
                report.title,
                report.abstract,
                json.dumps(report.to_dict()["sections"]),
                json.dumps(report.key_findings),
                json.dumps(report.limitations),
                json.dumps(report.bibliography),
                report.word_count,
                report.generated_at,
            )
            row = await conn.fetchrow(
                "SELECT * FROM research_reports WHERE session_id = $1",
                UUID(report.session_id),
            )
        log_service.log_db_operation(
            operation="upsert", table="research_reports", status="success", details=report.session_id
        )
        return _report_from_row(row)

    async def get_report(self, session_id: str) -> Report | None:
        uid = _as_uuid(session_id)
        if uid is None:
            return None
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM research_reports WHERE session_id = $1", uid)
        return _report_from_row(row) if row else None

    # --- Events ---

    async def append_event(self, event: ResearchEvent) -> ResearchEvent:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO research_events (session_id, event_type, data, created_at)
                VALUES ($1, $2, $3, $4)
                RETURNING *
                """,
                UUID(event.session_id),
                event.event.value,
                json.dumps(event.data, default=str),
                event.created_at,
            )
        return _event_from_row(row)

    async def list_events(
        self,
        session_id: str,
        *,
        after_id: int | None = None,
        limit: int = 10,
    ) -> list[ResearchEvent]:
        uid = _as_uuid(session_id)
        if uid is None:
            return []
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM research_events
                WHERE session_id = $1 AND id > $2
                ORDER BY id
                LIMIT $3
                """,
                uid,
                after_id or 0,
                limit,
            )
        return [_event_from_row(r) for r in rows]
