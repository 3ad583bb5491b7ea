from __future__ import annotations

from deepresearch.models.research import SourceType
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    parse_timestamp,
)
from deepresearch.tools.web_utils import strip_html

STACKEXCHANGE_SEARCH_URL = "https://api.stackexchange.com/2.3/search/advanced"


class StackOverflowSearchProvider(SearchProvider):
    """Stack Exchange advanced search scoped to stackoverflow."""

    name = "stackoverflow"
    category = "forum"
    max_per_second = 5
    max_concurrent = 3

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        params: dict[str, object] = {
            "order": "desc",
            "sort": "relevance",
            "q": query,
            "site": "stackoverflow",
            "pagesize": options.max_results,
            "filter": "withbody",
        }
        if options.date_range:
            params["fromdate"] = int(options.date_range.start.timestamp())
            params["todate"] = int(options.date_range.end.timestamp())

        payload = await self._get_json(STACKEXCHANGE_SEARCH_URL, params=params)
        results: list[SearchResult] = []
        for item in payload.get("items", []) or []:
            url = item.get("link")
            if not url:
                continue
            title = strip_html(item.get("title", ""))
            body = item.get("body_markdown") or item.get("body") or title
            results.append(
                SearchResult(
                    title=title,
                    url=url,
                    snippet=strip_html(body)[:200],
                    author=(item.get("owner") or {}).get("display_name"),
                    publish_date=parse_timestamp(item.get("creation_date")),
                    source_type=SourceType.STACKOVERFLOW,
                    provider=self.name,
                )
            )
        return results
