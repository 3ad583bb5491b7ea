from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from deepresearch.models.research import (
    CitationStyle,
    DateRange,
    ReportFormat,
    ResearchConfig,
    ResearchDepth,
)


# --- Requests ---


class DateRangeInput(BaseModel):
    start: datetime
    end: datetime


class ResearchConfigInput(BaseModel):
    depth: ResearchDepth = ResearchDepth.STANDARD
    max_sources: int | None = Field(default=None, ge=1, le=200)
    include_academic: bool = True
    include_news: bool = True
    include_forums: bool = False
    date_range: DateRangeInput | None = None
    required_domains: list[str] = Field(default_factory=list)
    excluded_domains: list[str] = Field(default_factory=list)
    citation_style: CitationStyle = CitationStyle.APA
    generate_report: bool = True
    report_format: ReportFormat = ReportFormat.DETAILED

    def to_config(self) -> ResearchConfig:
        return ResearchConfig(
            depth=self.depth,
            max_sources=self.max_sources or 0,
            include_academic=self.include_academic,
            include_news=self.include_news,
            include_forums=self.include_forums,
            date_range=(
                DateRange(start=self.date_range.start, end=self.date_range.end)
                if self.date_range
                else None
            ),
            required_domains=[d.strip() for d in self.required_domains if d.strip()],
            excluded_domains=[d.strip() for d in self.excluded_domains if d.strip()],
            citation_style=self.citation_style,
            generate_report=self.generate_report,
            report_format=self.report_format,
        )


class ResearchStartRequest(BaseModel):
    query: str = Field(min_length=3)
    project_id: str = Field(min_length=1)
    user_id: str | None = None
    config: ResearchConfigInput | None = None

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            raise ValueError("query must be at least 3 characters")
        return value


class DeepDiveRequest(BaseModel):
    question: str = Field(min_length=1)


# --- Responses ---


class ResearchStartResponse(BaseModel):
    session_id: str
    query: str
    status: str
    config: dict[str, Any]
    created_at: datetime
