from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from tavily import AsyncTavilyClient

from deepresearch.config import settings
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    detect_source_type,
    parse_timestamp,
)

TIME_RANGES = ((1, "day"), (7, "week"), (31, "month"), (366, "year"))


def _time_range_for(start: datetime) -> str | None:
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    age_days = (datetime.now(timezone.utc) - start).days
    for max_days, label in TIME_RANGES:
        if age_days <= max_days:
            return label
    return None


class TavilySearchProvider(SearchProvider):
    """Tavily AI-native search. Results carry relevance scores."""

    name = "tavily"
    category = "web"
    max_per_second = 5
    max_concurrent = 3

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = settings.tavily_api_key if api_key is None else api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        client = AsyncTavilyClient(api_key=self.api_key)

        kwargs: dict[str, Any] = {
            "query": query,
            "search_depth": "advanced",
            "max_results": options.max_results,
            "topic": "general",
            "timeout": int(self.timeout),
        }
        if options.date_range:
            time_range = _time_range_for(options.date_range.start)
            if time_range:
                kwargs["time_range"] = time_range
        if options.domains:
            kwargs["include_domains"] = list(options.domains)

        response = await client.search(**kwargs)

        return [
            SearchResult(
                title=r.get("title", ""),
                url=r.get("url", ""),
                snippet=r.get("content", ""),
                publish_date=parse_timestamp(r.get("published_date")),
                source_type=detect_source_type(r.get("url", "")),
                provider=self.name,
                score=float(r.get("score", 0.0) or 0.0),
            )
            for r in response.get("results", [])
            if r.get("url")
        ]
