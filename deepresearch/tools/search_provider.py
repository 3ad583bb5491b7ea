from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from deepresearch.config import settings
from deepresearch.models.research import DateRange, SourceType
from deepresearch.services import logger as log_service
from deepresearch.tools.rate_limiter import RateLimiter


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str
    source_type: SourceType
    provider: str
    author: str | None = None
    publish_date: datetime | None = None
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "url": self.url,
            "snippet": self.snippet,
            "source_type": SourceType(self.source_type).value,
            "provider": self.provider,
            "author": self.author,
            "publish_date": self.publish_date.isoformat() if self.publish_date else None,
            "score": self.score,
        }


@dataclass
class SearchOptions:
    max_results: int = 10
    date_range: DateRange | None = None
    domains: list[str] = field(default_factory=list)
    language: str | None = None


def detect_source_type(url: str) -> SourceType:
    """Best-effort classification from host substrings."""
    lowered = (url or "").lower()
    if "wikipedia.org" in lowered:
        return SourceType.WIKIPEDIA
    if "reddit.com" in lowered:
        return SourceType.REDDIT
    if "stackoverflow.com" in lowered:
        return SourceType.STACKOVERFLOW
    if "arxiv.org" in lowered:
        return SourceType.ARXIV
    return SourceType.WEB


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings and unix epoch seconds into aware datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SearchProvider:
    """Uniform contract for one external search source.

    Subclasses implement ``_search`` and may override ``is_available``.
    ``search`` runs ``_search`` under the provider's own rate limiter and never
    raises: transport and API errors are logged and yield an empty list.
    """

    name: str = "base"
    category: str = "web"  # web | academic | news | forum | reference
    max_per_second: float = 5
    max_concurrent: int = 3

    def __init__(self, *, timeout: float | None = None):
        self.timeout = timeout if timeout is not None else settings.search_timeout_seconds
        self.rate_limiter = RateLimiter(self.max_per_second, self.max_concurrent)

    def is_available(self) -> bool:
        return True

    async def search(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        options = options or SearchOptions()
        if not self.is_available():
            log_service.logger.warning(f"{self.name} search provider not configured")
            return []

        try:
            return await self.rate_limiter.throttle(lambda: self._search(query, options))
        except Exception as e:
            log_service.log_event(
                event_type="provider_error",
                message=f"{self.name} search failed",
                provider=self.name,
                query=query[:100],
                error=str(e),
            )
            return []

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        raise NotImplementedError(f"{self.name} does not implement _search")

    async def _get(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return response

    async def _get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = await self._get(url, params=params, headers=headers)
        return response.json()
