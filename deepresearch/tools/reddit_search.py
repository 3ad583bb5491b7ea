from __future__ import annotations

from deepresearch.models.research import SourceType
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    parse_timestamp,
)

REDDIT_SEARCH_URL = "https://www.reddit.com/search.json"
REDDIT_USER_AGENT = "DeepResearch/1.0"


class RedditSearchProvider(SearchProvider):
    """Reddit public JSON search."""

    name = "reddit"
    category = "forum"
    max_per_second = 2
    max_concurrent = 2

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        payload = await self._get_json(
            REDDIT_SEARCH_URL,
            params={"q": query, "limit": options.max_results, "sort": "relevance"},
            headers={"User-Agent": REDDIT_USER_AGENT},
        )
        results: list[SearchResult] = []
        for child in (payload.get("data") or {}).get("children", []) or []:
            post = child.get("data") or {}
            permalink = post.get("permalink")
            if not permalink:
                continue
            title = post.get("title", "")
            results.append(
                SearchResult(
                    title=title,
                    url=f"https://www.reddit.com{permalink}",
                    snippet=(post.get("selftext") or "")[:200] or title,
                    author=post.get("author"),
                    publish_date=parse_timestamp(post.get("created_utc")),
                    source_type=SourceType.REDDIT,
                    provider=self.name,
                )
            )
        return results
