"""Report synthesis over a finished session's facts and sources."""
from __future__ import annotations

from typing import Any

from deepresearch.llm_client import TextGenerator
from deepresearch.models.errors import ReportGenerationError
from deepresearch.models.research import Report, ReportSection, ResearchSession
from deepresearch.research_core.citations import build_bibliography
from deepresearch.research_core.json_utils import extract_json_object, string_items
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt
from deepresearch.services.research_store import ResearchStore

REPORT_FACT_LIMIT = 30
BIBLIOGRAPHY_LIMIT = 20
REPORT_TOKEN_BUDGET = 4000


def parse_sections(value: Any) -> list[ReportSection]:
    sections: list[ReportSection] = []
    for item in value if isinstance(value, list) else []:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        content = str(item.get("content") or "").strip()
        if not title and not content:
            continue
        citations = item.get("citations")
        sections.append(
            ReportSection(
                title=title,
                content=content,
                citations=string_items(citations if isinstance(citations, list) else None),
            )
        )
    return sections


def parse_report(raw: str, session: ResearchSession, bibliography: list[str]) -> Report:
    data = extract_json_object(raw)
    if data is None:
        raise ReportGenerationError("Failed to parse report")

    key_findings = data.get("keyFindings", data.get("key_findings"))
    return Report(
        session_id=session.id,
        title=str(data.get("title") or session.query).strip(),
        abstract=str(data.get("abstract") or "").strip(),
        sections=parse_sections(data.get("sections")),
        key_findings=string_items(key_findings if isinstance(key_findings, list) else None),
        limitations=string_items(data.get("limitations") if isinstance(data.get("limitations"), list) else None),
        bibliography=bibliography,
    )


class ReportSynthesizer:
    def __init__(self, store: ResearchStore, generator: TextGenerator):
        self.store = store
        self.generator = generator

    async def synthesize(self, session: ResearchSession) -> Report:
        """Build and persist a report; an existing report wins on conflict."""
        facts = await self.store.list_facts(session.id, order_by="confidence", limit=REPORT_FACT_LIMIT)
        sources = await self.store.list_sources(
            session.id, order_by="credibility", limit=BIBLIOGRAPHY_LIMIT
        )

        prompt = render_prompt(
            "report.generate",
            report_format=session.config.report_format.value,
            query=session.query,
            facts="\n".join(f.statement for f in facts),
        )
        try:
            raw = await self.generator.generate(
                prompt, max_tokens=REPORT_TOKEN_BUDGET, caller="report"
            )
        except Exception as e:
            log_service.log_event(
                event_type="report_generation_failed",
                message="Report generation failed",
                session_id=session.id,
                error=str(e),
            )
            raise ReportGenerationError(f"Failed to generate report: {e}") from e

        report = parse_report(
            raw, session, build_bibliography(sources, session.config.citation_style)
        )
        saved = await self.store.save_report(report)
        log_service.log_event(
            event_type="report_generated",
            message="Research report saved",
            session_id=session.id,
            sections=len(saved.sections),
            word_count=saved.word_count,
        )
        return saved
