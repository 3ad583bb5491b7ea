from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from deepresearch.config import settings
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    detect_source_type,
)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"

FRESHNESS_WINDOWS = (
    (1, "pd"),
    (7, "pw"),
    (31, "pm"),
    (366, "py"),
)


def _freshness_for(start: datetime) -> str | None:
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    age_days = (datetime.now(timezone.utc) - start).days
    for max_days, code in FRESHNESS_WINDOWS:
        if age_days <= max_days:
            return code
    return None


class BraveSearchProvider(SearchProvider):
    """Brave web search with rank-derived relevance scores."""

    name = "brave"
    category = "web"
    max_per_second = 1
    max_concurrent = 1

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = settings.brave_api_key if api_key is None else api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        params: dict[str, Any] = {
            "q": query,
            "count": min(options.max_results, 20),
        }
        if options.date_range:
            freshness = _freshness_for(options.date_range.start)
            if freshness:
                params["freshness"] = freshness

        payload = await self._get_json(
            BRAVE_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self.api_key,
            },
        )

        raw_results = payload.get("web", {}).get("results", [])
        total = max(len(raw_results), 1)
        mapped: list[SearchResult] = []
        for idx, item in enumerate(raw_results):
            url = item.get("url", "")
            if not url:
                continue
            snippets = item.get("extra_snippets", []) or []
            description = item.get("description", "") or ""
            # Brave exposes rank, not a relevance score.
            mapped.append(
                SearchResult(
                    title=item.get("title", ""),
                    url=url,
                    snippet=description.strip() or " ".join(snippets).strip(),
                    source_type=detect_source_type(url),
                    provider=self.name,
                    score=max(0.0, 1.0 - (idx / total)),
                )
            )
        return mapped
