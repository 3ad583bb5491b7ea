from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from deepresearch.config import settings
from deepresearch.models.research import SourceType
from deepresearch.tools.search_provider import SearchOptions, SearchProvider, SearchResult

SERPAPI_URL = "https://serpapi.com/search"

_YEAR_RE = re.compile(r"\b(?:19|20)\d{2}\b")


def year_from_summary(summary: str) -> datetime | None:
    match = _YEAR_RE.search(summary or "")
    if not match:
        return None
    return datetime(int(match.group(0)), 1, 1, tzinfo=timezone.utc)


class ScholarSearchProvider(SearchProvider):
    """Google Scholar results through SerpAPI."""

    name = "scholar"
    category = "academic"
    max_per_second = 1
    max_concurrent = 1

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = settings.serpapi_api_key if api_key is None else api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        params: dict[str, Any] = {
            "engine": "google_scholar",
            "q": query,
            "api_key": self.api_key,
            "num": options.max_results,
        }
        if options.date_range:
            params["as_ylo"] = options.date_range.start.year
            params["as_yhi"] = options.date_range.end.year

        payload = await self._get_json(SERPAPI_URL, params=params)

        results: list[SearchResult] = []
        for item in payload.get("organic_results", []) or []:
            url = item.get("link")
            if not url:
                continue
            publication = item.get("publication_info") or {}
            summary = publication.get("summary", "") or ""
            authors = publication.get("authors") or []
            results.append(
                SearchResult(
                    title=item.get("title", ""),
                    url=url,
                    snippet=item.get("snippet") or summary,
                    author=authors[0].get("name") if authors else None,
                    publish_date=year_from_summary(summary),
                    source_type=SourceType.ACADEMIC,
                    provider=self.name,
                )
            )
        return results
