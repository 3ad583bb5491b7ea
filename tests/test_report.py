from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from deepresearch.models.errors import ReportGenerationError, UnsupportedExportFormatError
from deepresearch.models.research import (
    CitationStyle,
    Credibility,
    Fact,
    Report,
    ReportSection,
    ResearchConfig,
    ResearchSession,
    Source,
)
from deepresearch.research_core.citations import build_bibliography, format_citation
from deepresearch.research_core.export import export_html, export_markdown, export_report
from deepresearch.research_core.report import ReportSynthesizer, parse_report
from deepresearch.services.memory_store import InMemoryResearchStore

PUBLISHED = datetime(2023, 4, 1, tzinfo=timezone.utc)

REPORT_REPLY = json.dumps(
    {
        "title": "Quantum Computing in 2024",
        "abstract": "An overview of recent progress.",
        "sections": [
            {"title": "Hardware", "content": "Superconducting qubits lead."},
            {"title": "", "content": ""},
        ],
        "keyFindings": ["Error rates are falling."],
        "limitations": ["Few peer-reviewed sources."],
    }
)


def _session(**config):
    return ResearchSession(
        id="s1",
        project_id="p1",
        query="quantum computing",
        config=ResearchConfig(**config),
    )


def _report(**overrides):
    data = dict(
        session_id="s1",
        title="Quantum <Computing>",
        abstract="Qubits & gates",
        sections=[ReportSection(title="Hardware", content="Uses <b>superconductors</b>.")],
        key_findings=["Error rates fall"],
        bibliography=["Doe. (2023). Qubits. Retrieved from https://example.com"],
    )
    data.update(overrides)
    return Report(**data)


@pytest.mark.parametrize(
    "style,expected",
    [
        (CitationStyle.APA, "Jane Doe. (2023). Qubits. Retrieved from https://example.com/q"),
        (CitationStyle.MLA, 'Jane Doe. "Qubits." Web. 2023. <https://example.com/q>.'),
        (CitationStyle.CHICAGO, 'Jane Doe. "Qubits." Accessed 2023. https://example.com/q.'),
        (CitationStyle.IEEE, '[3] Jane Doe, "Qubits," 2023. [Online]. Available: https://example.com/q'),
        ("harvard", "Jane Doe (2023). Qubits. https://example.com/q"),
    ],
)
def test_format_citation_styles(style, expected):
    citation = format_citation(
        style, title="Qubits", url="https://example.com/q", author="Jane Doe", published=PUBLISHED, index=3
    )
    assert citation == expected


def test_format_citation_defaults_author_and_year():
    citation = format_citation("apa", title="Qubits", url="https://example.com/q")
    assert citation == "Unknown. (n.d.). Qubits. Retrieved from https://example.com/q"


def test_build_bibliography_numbers_sources_in_order():
    sources = [
        Source(id=f"src{i}", session_id="s1", url=f"https://example.com/{i}", title=f"T{i}", content="", provider="p")
        for i in range(1, 3)
    ]
    entries = build_bibliography(sources, CitationStyle.IEEE)
    assert entries[0].startswith("[1] Unknown")
    assert entries[1].startswith("[2] Unknown")


def test_parse_report_accepts_camel_case_findings_and_drops_empty_sections():
    report = parse_report(REPORT_REPLY, _session(), ["ref"])

    assert report.title == "Quantum Computing in 2024"
    assert [s.title for s in report.sections] == ["Hardware"]
    assert report.key_findings == ["Error rates are falling."]
    assert report.limitations == ["Few peer-reviewed sources."]
    assert report.bibliography == ["ref"]
    assert report.word_count == len("An overview of recent progress.".split()) + 3


def test_parse_report_falls_back_to_query_title():
    report = parse_report(json.dumps({"abstract": "a", "key_findings": ["k"]}), _session(), [])
    assert report.title == "quantum computing"
    assert report.key_findings == ["k"]


def test_parse_report_raises_on_unparseable_output():
    with pytest.raises(ReportGenerationError, match="Failed to parse report"):
        parse_report("Sorry, I cannot help.", _session(), [])


def test_export_markdown_layout():
    body = export_markdown(_report())

    assert body.startswith("# Quantum <Computing>\n\n## Abstract\n\nQubits & gates\n")
    assert "## Hardware" in body
    assert "## Key Findings\n\n- Error rates fall" in body
    assert body.rstrip().endswith("- Doe. (2023). Qubits. Retrieved from https://example.com")


def test_export_html_escapes_report_text():
    body = export_html(_report())

    assert "<h1>Quantum &lt;Computing&gt;</h1>" in body
    assert '<p class="abstract">Qubits &amp; gates</p>' in body
    assert "&lt;b&gt;superconductors&lt;/b&gt;" in body
    assert "<b>superconductors</b>" not in body
    assert '<ol class="bibliography">' in body


def test_export_report_content_types_and_unsupported_formats():
    assert export_report(_report(), "MD")[1] == "text/markdown"
    assert export_report(_report(), "html")[1] == "text/html"

    with pytest.raises(UnsupportedExportFormatError) as pending:
        export_report(_report(), "pdf")
    assert pending.value.known is True

    with pytest.raises(UnsupportedExportFormatError) as invalid:
        export_report(_report(), "rtf")
    assert invalid.value.known is False


@pytest.mark.asyncio
async def test_synthesize_persists_once_with_bibliography():
    store = InMemoryResearchStore()
    session = await store.create_session(_session(citation_style=CitationStyle.MLA))
    await store.add_source(
        Source(
            id="low",
            session_id="s1",
            url="https://low.example.com",
            title="Low",
            content="",
            provider="p",
            credibility=Credibility(overall=0.2),
        )
    )
    await store.add_source(
        Source(
            id="high",
            session_id="s1",
            url="https://high.example.com",
            title="High",
            content="",
            provider="p",
            author="A. Author",
            publish_date=PUBLISHED,
            credibility=Credibility(overall=0.9),
        )
    )
    await store.add_fact(Fact(id="f1", session_id="s1", statement="Qubits decohere.", confidence=0.9))

    generator = MagicMock()
    generator.generate = AsyncMock(return_value=REPORT_REPLY)

    first = await ReportSynthesizer(store, generator).synthesize(session)

    assert first.bibliography[0] == 'A. Author. "High." Web. 2023. <https://high.example.com>.'
    assert len(first.bibliography) == 2
    prompt = generator.generate.await_args.args[0]
    assert "Qubits decohere." in prompt
    assert "detailed research report" in prompt

    generator.generate = AsyncMock(
        return_value=json.dumps({"title": "Second attempt", "abstract": "b"})
    )
    second = await ReportSynthesizer(store, generator).synthesize(session)

    assert second.title == "Quantum Computing in 2024"
    assert (await store.get_report("s1")).title == "Quantum Computing in 2024"


@pytest.mark.asyncio
async def test_synthesize_wraps_generation_failures():
    store = InMemoryResearchStore()
    session = await store.create_session(_session())
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=RuntimeError("gateway timeout"))

    with pytest.raises(ReportGenerationError):
        await ReportSynthesizer(store, generator).synthesize(session)

    assert await store.get_report("s1") is None
