from __future__ import annotations

from typing import Any

from deepresearch.config import settings
from deepresearch.models.research import SourceType
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    parse_timestamp,
)

NEWSAPI_URL = "https://newsapi.org/v2/everything"


class NewsApiSearchProvider(SearchProvider):
    """NewsAPI ``/everything`` endpoint."""

    name = "newsapi"
    category = "news"
    max_per_second = 1
    max_concurrent = 1

    def __init__(self, api_key: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_key = settings.newsapi_api_key if api_key is None else api_key

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        params: dict[str, Any] = {
            "q": query,
            "pageSize": options.max_results,
            "sortBy": "relevancy",
            "apiKey": self.api_key,
        }
        if options.date_range:
            params["from"] = options.date_range.start.date().isoformat()
            params["to"] = options.date_range.end.date().isoformat()
        if options.domains:
            params["domains"] = ",".join(options.domains)
        if options.language:
            params["language"] = options.language

        payload = await self._get_json(NEWSAPI_URL, params=params)
        results: list[SearchResult] = []
        for item in payload.get("articles", []) or []:
            url = item.get("url")
            if not url:
                continue
            results.append(
                SearchResult(
                    title=item.get("title", "") or "",
                    url=url,
                    snippet=item.get("description") or (item.get("content") or "")[:200],
                    author=item.get("author"),
                    publish_date=parse_timestamp(item.get("publishedAt")),
                    source_type=SourceType.NEWS,
                    provider=self.name,
                )
            )
        return results
