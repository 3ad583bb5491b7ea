from __future__ import annotations

from datetime import datetime
from typing import Any

from deepresearch.config import settings
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    detect_source_type,
)

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"


def _format_date(value: datetime) -> str:
    return value.strftime("%Y%m%d")


class GoogleSearchProvider(SearchProvider):
    """Google Custom Search JSON API."""

    name = "google"
    category = "web"
    max_per_second = 10
    max_concurrent = 5

    def __init__(
        self,
        api_key: str | None = None,
        search_engine_id: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = settings.google_api_key if api_key is None else api_key
        self.search_engine_id = (
            settings.google_search_engine_id if search_engine_id is None else search_engine_id
        )

    def is_available(self) -> bool:
        return bool(self.api_key and self.search_engine_id)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        q = query
        if options.domains:
            site_query = " OR ".join(f"site:{d}" for d in options.domains)
            q = f"{query} ({site_query})"

        params: dict[str, Any] = {
            "key": self.api_key,
            "cx": self.search_engine_id,
            "q": q,
            # The API caps a page at 10 results.
            "num": min(options.max_results, 10),
        }
        if options.date_range:
            start = _format_date(options.date_range.start)
            end = _format_date(options.date_range.end)
            params["sort"] = f"date:r:{start}:{end}"
        if options.language:
            params["lr"] = f"lang_{options.language}"

        payload = await self._get_json(GOOGLE_SEARCH_URL, params=params)
        return [
            SearchResult(
                title=item.get("title", ""),
                url=item.get("link", ""),
                snippet=item.get("snippet", "") or "",
                source_type=detect_source_type(item.get("link", "")),
                provider=self.name,
            )
            for item in payload.get("items", []) or []
            if item.get("link")
        ]
