from __future__ import annotations

from typing import Any

from deepresearch.config import settings
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    detect_source_type,
    parse_timestamp,
)

BING_SEARCH_URL = "https://api.bing.microsoft.com/v7.0/search"


class BingSearchProvider(SearchProvider):
    """Bing Web Search v7."""

    name = "bing"
    category = "web"
    max_per_second = 3
    max_concurrent = 3

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = settings.bing_api_key if api_key is None else api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        params: dict[str, Any] = {"q": query, "count": options.max_results}
        if options.language:
            params["setLang"] = options.language

        payload = await self._get_json(
            BING_SEARCH_URL,
            params=params,
            headers={"Ocp-Apim-Subscription-Key": self.api_key},
        )
        raw_results = (payload.get("webPages") or {}).get("value", []) or []
        return [
            SearchResult(
                title=item.get("name", ""),
                url=item.get("url", ""),
                snippet=item.get("snippet", "") or "",
                publish_date=parse_timestamp(item.get("datePublished")),
                source_type=detect_source_type(item.get("url", "")),
                provider=self.name,
            )
            for item in raw_results
            if item.get("url")
        ]
