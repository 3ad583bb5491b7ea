from __future__ import annotations

from html import escape

from deepresearch.models.errors import UnsupportedExportFormatError
from deepresearch.models.research import Report

PENDING_FORMATS = ("pdf", "docx")

CONTENT_TYPES = {
    "md": "text/markdown",
    "html": "text/html",
}


def export_markdown(report: Report) -> str:
    lines = [f"# {report.title}", "", "## Abstract", "", report.abstract, ""]
    for section in report.sections:
        lines.extend([f"## {section.title}", "", section.content, ""])
    lines.extend(["## Key Findings", ""])
    lines.extend(f"- {finding}" for finding in report.key_findings)
    lines.extend(["", "## Bibliography", ""])
    lines.extend(f"- {entry}" for entry in report.bibliography)
    return "\n".join(lines) + "\n"


_HTML_STYLE = (
    "body { font-family: Georgia, serif; max-width: 800px; margin: 40px auto; "
    "line-height: 1.6; color: #222; }\n"
    "h1 { border-bottom: 2px solid #333; padding-bottom: 10px; }\n"
    "h2 { margin-top: 30px; color: #444; }\n"
    ".abstract { font-style: italic; background: #f5f5f5; padding: 15px; }\n"
    ".bibliography li { margin-bottom: 8px; font-size: 0.9em; }"
)


def export_html(report: Report) -> str:
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        f"<title>{escape(report.title)}</title>",
        f"<style>\n{_HTML_STYLE}\n</style>",
        "</head>",
        "<body>",
        f"<h1>{escape(report.title)}</h1>",
        "<h2>Abstract</h2>",
        f'<p class="abstract">{escape(report.abstract)}</p>',
    ]
    for section in report.sections:
        parts.append(f"<h2>{escape(section.title)}</h2>")
        parts.append(f"<p>{escape(section.content)}</p>")
    parts.append("<h2>Key Findings</h2>")
    parts.append("<ul>")
    parts.extend(f"<li>{escape(finding)}</li>" for finding in report.key_findings)
    parts.append("</ul>")
    parts.append("<h2>Bibliography</h2>")
    parts.append('<ol class="bibliography">')
    parts.extend(f"<li>{escape(entry)}</li>" for entry in report.bibliography)
    parts.append("</ol>")
    parts.extend(["</body>", "</html>"])
    return "\n".join(parts) + "\n"


def export_report(report: Report, export_format: str) -> tuple[str, str]:
    """Render ``report`` and return ``(body, content_type)``."""
    fmt = (export_format or "").lower()
    if fmt == "md":
        return export_markdown(report), CONTENT_TYPES["md"]
    if fmt == "html":
        return export_html(report), CONTENT_TYPES["html"]
    raise UnsupportedExportFormatError(export_format, known=fmt in PENDING_FORMATS)
