from __future__ import annotations

from typing import Any

import httpx

from deepresearch.config import settings
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    detect_source_type,
    parse_timestamp,
)


class ExaSearchProvider(SearchProvider):
    """Exa neural search over the REST API."""

    name = "exa"
    category = "web"
    max_per_second = 5
    max_concurrent = 3

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = settings.exa_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.exa_base_url).rstrip("/")

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        body: dict[str, Any] = {
            "query": query,
            "numResults": min(options.max_results, 25),
            "contents": {"highlights": True},
        }
        if options.domains:
            body["includeDomains"] = list(options.domains)
        if options.date_range:
            body["startPublishedDate"] = options.date_range.start.isoformat()
            body["endPublishedDate"] = options.date_range.end.isoformat()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/search",
                json=body,
                headers={
                    "x-api-key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
            response.raise_for_status()
            payload = response.json()

        results: list[SearchResult] = []
        for item in (payload or {}).get("results", []) or []:
            url = item.get("url")
            if not url:
                continue
            highlights = item.get("highlights") or []
            snippet = highlights[0] if highlights else (item.get("text") or "")[:300]
            score = item.get("score")
            results.append(
                SearchResult(
                    title=item.get("title") or "",
                    url=url,
                    snippet=snippet,
                    author=item.get("author") or None,
                    publish_date=parse_timestamp(item.get("publishedDate")),
                    source_type=detect_source_type(url),
                    provider=self.name,
                    score=float(score) if score is not None else None,
                )
            )
        return results
