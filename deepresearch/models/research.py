from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    RESEARCHING = "researching"
    ANALYZING = "analyzing"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


class ResearchDepth(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"
    EXHAUSTIVE = "exhaustive"


class CitationStyle(str, Enum):
    APA = "apa"
    MLA = "mla"
    CHICAGO = "chicago"
    IEEE = "ieee"


class ReportFormat(str, Enum):
    SUMMARY = "summary"
    DETAILED = "detailed"
    ACADEMIC = "academic"


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    CONTRADICTED = "contradicted"


class SourceType(str, Enum):
    WEB = "web"
    ACADEMIC = "academic"
    NEWS = "news"
    FORUM = "forum"
    WIKIPEDIA = "wikipedia"
    REDDIT = "reddit"
    STACKOVERFLOW = "stackoverflow"
    ARXIV = "arxiv"


MAX_SOURCES_BY_DEPTH: dict[ResearchDepth, int] = {
    ResearchDepth.QUICK: 10,
    ResearchDepth.STANDARD: 20,
    ResearchDepth.DEEP: 40,
    ResearchDepth.EXHAUSTIVE: 100,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass(slots=True)
class DateRange:
    start: datetime
    end: datetime


@dataclass
class ResearchConfig:
    depth: ResearchDepth = ResearchDepth.STANDARD
    max_sources: int = 0
    include_academic: bool = True
    include_news: bool = True
    include_forums: bool = False
    date_range: DateRange | None = None
    required_domains: list[str] = field(default_factory=list)
    excluded_domains: list[str] = field(default_factory=list)
    citation_style: CitationStyle = CitationStyle.APA
    generate_report: bool = True
    report_format: ReportFormat = ReportFormat.DETAILED

    def __post_init__(self) -> None:
        self.depth = ResearchDepth(self.depth)
        self.citation_style = CitationStyle(self.citation_style)
        self.report_format = ReportFormat(self.report_format)
        if not self.max_sources or self.max_sources <= 0:
            self.max_sources = MAX_SOURCES_BY_DEPTH[self.depth]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ResearchConfig":
        data = dict(data or {})
        date_range = data.get("date_range")
        if isinstance(date_range, dict) and date_range.get("start") and date_range.get("end"):
            data["date_range"] = DateRange(
                start=_coerce_datetime(date_range["start"]),
                end=_coerce_datetime(date_range["end"]),
            )
        elif not isinstance(date_range, DateRange):
            data["date_range"] = None
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    def to_dict(self) -> dict[str, Any]:
        return {
            "depth": self.depth.value,
            "max_sources": self.max_sources,
            "include_academic": self.include_academic,
            "include_news": self.include_news,
            "include_forums": self.include_forums,
            "date_range": (
                {
                    "start": self.date_range.start.isoformat(),
                    "end": self.date_range.end.isoformat(),
                }
                if self.date_range
                else None
            ),
            "required_domains": list(self.required_domains),
            "excluded_domains": list(self.excluded_domains),
            "citation_style": self.citation_style.value,
            "generate_report": self.generate_report,
            "report_format": self.report_format.value,
        }


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass
class SessionStats:
    sources_searched: int = 0
    sources_used: int = 0
    facts_extracted: int = 0
    contradictions_found: int = 0
    duration_ms: int = 0


@dataclass
class ResearchSession:
    id: str
    project_id: str
    query: str
    config: ResearchConfig
    status: SessionStatus = SessionStatus.RESEARCHING
    user_id: str | None = None
    stats: SessionStats = field(default_factory=SessionStats)
    error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "query": self.query,
            "status": SessionStatus(self.status).value,
            "config": self.config.to_dict(),
            "stats": asdict(self.stats),
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(slots=True)
class Credibility:
    authority: float = 0.5
    recency: float = 0.5
    bias: float = 0.5
    overall: float = 0.5

    def to_dict(self) -> dict[str, float]:
        return {
            "authority_score": self.authority,
            "recency_score": self.recency,
            "bias_score": self.bias,
            "overall_score": self.overall,
        }


@dataclass
class Source:
    id: str
    session_id: str
    url: str
    title: str
    content: str
    provider: str
    source_type: SourceType = SourceType.WEB
    excerpt: str = ""
    author: str | None = None
    publish_date: datetime | None = None
    credibility: Credibility = field(default_factory=Credibility)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self, *, include_content: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "session_id": self.session_id,
            "url": self.url,
            "title": self.title,
            "excerpt": self.excerpt,
            "author": self.author,
            "publish_date": self.publish_date.isoformat() if self.publish_date else None,
            "source_type": SourceType(self.source_type).value,
            "provider": self.provider,
            "credibility": self.credibility.to_dict(),
        }
        if include_content:
            data["content"] = self.content
        return data


@dataclass
class Fact:
    id: str
    session_id: str
    statement: str
    confidence: float = 0.7
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verification_count: int = 1
    source_ids: list[str] = field(default_factory=list)
    extracted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "statement": self.statement,
            "confidence": self.confidence,
            "verification_status": VerificationStatus(self.verification_status).value,
            "verification_count": self.verification_count,
            "source_ids": list(self.source_ids),
            "extracted_at": self.extracted_at.isoformat(),
        }


@dataclass(slots=True)
class Contradiction:
    id: str
    session_id: str
    fact_id_1: str
    fact_id_2: str
    explanation: str
    severity: str = "moderate"
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "fact_id_1": self.fact_id_1,
            "fact_id_2": self.fact_id_2,
            "explanation": self.explanation,
            "severity": self.severity,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class KnowledgeRelationship:
    id: str
    session_id: str
    source_id: str
    target_id: str
    relation_type: str
    strength: float = 0.7

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target_id": self.target_id,
            "type": self.relation_type,
            "strength": self.strength,
        }


@dataclass
class KnowledgeNode:
    id: str
    session_id: str
    entity: str
    entity_type: str
    properties: dict[str, Any] = field(default_factory=dict)
    importance: float = 0.5
    relationships: list[KnowledgeRelationship] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity": self.entity,
            "type": self.entity_type,
            "properties": dict(self.properties),
            "importance": self.importance,
            "relationships": [rel.to_dict() for rel in self.relationships],
        }


@dataclass(slots=True)
class FollowUpQuestion:
    id: str
    session_id: str
    question: str
    priority: float = 0.7

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "question": self.question, "priority": self.priority}


@dataclass(slots=True)
class ReportSection:
    title: str
    content: str
    citations: list[str] = field(default_factory=list)


@dataclass
class Report:
    session_id: str
    title: str
    abstract: str
    sections: list[ReportSection] = field(default_factory=list)
    key_findings: list[str] = field(default_factory=list)
    limitations: list[str] = field(default_factory=list)
    bibliography: list[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def word_count(self) -> int:
        parts = [self.abstract, *(section.content for section in self.sections)]
        return sum(len(part.split()) for part in parts if part)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "abstract": self.abstract,
            "sections": [
                {"title": s.title, "content": s.content, "citations": list(s.citations)}
                for s in self.sections
            ],
            "key_findings": list(self.key_findings),
            "limitations": list(self.limitations),
            "bibliography": list(self.bibliography),
            "word_count": self.word_count,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class SessionDetail:
    session: ResearchSession
    sources: list[Source] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    knowledge_graph: list[KnowledgeNode] = field(default_factory=list)
    follow_ups: list[FollowUpQuestion] = field(default_factory=list)
    report: Report | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.session.to_dict(),
            "sources": [s.to_dict() for s in self.sources],
            "facts": [f.to_dict() for f in self.facts],
            "knowledge_graph": [n.to_dict() for n in self.knowledge_graph],
            "follow_up_questions": [q.question for q in self.follow_ups],
            "report": self.report.to_dict() if self.report else None,
        }
