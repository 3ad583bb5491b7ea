from __future__ import annotations


class ResearchError(Exception):
    """Base class for research pipeline errors."""


class SessionNotFoundError(ResearchError):
    def __init__(self, session_id: str):
        super().__init__(f"Research session not found: {session_id}")
        self.session_id = session_id


class ReportNotFoundError(ResearchError):
    def __init__(self, session_id: str):
        super().__init__(f"Report not generated yet for session: {session_id}")
        self.session_id = session_id


class ReportGenerationError(ResearchError):
    """Raised when the report narrative cannot be produced or parsed."""


class UnsupportedExportFormatError(ResearchError):
    def __init__(self, export_format: str, *, known: bool = False):
        if known:
            message = f"Format {export_format} not yet implemented"
        else:
            message = f"Invalid format: {export_format}. Supported: pdf, docx, md, html"
        super().__init__(message)
        self.export_format = export_format
        self.known = known
