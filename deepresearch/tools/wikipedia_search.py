from __future__ import annotations

from urllib.parse import quote

from deepresearch.models.research import SourceType
from deepresearch.tools.search_provider import SearchOptions, SearchProvider, SearchResult
from deepresearch.tools.web_utils import strip_html


class WikipediaSearchProvider(SearchProvider):
    """MediaWiki full-text search. Public API, no key required."""

    name = "wikipedia"
    category = "reference"
    max_per_second = 5
    max_concurrent = 3

    def _api_url(self, options: SearchOptions) -> tuple[str, str]:
        lang = (options.language or "en").split("-")[0].lower() or "en"
        base = f"https://{lang}.wikipedia.org"
        return f"{base}/w/api.php", base

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        api_url, base = self._api_url(options)
        payload = await self._get_json(
            api_url,
            params={
                "action": "query",
                "format": "json",
                "list": "search",
                "srsearch": query,
                "srlimit": options.max_results,
            },
        )
        results: list[SearchResult] = []
        for item in (payload.get("query") or {}).get("search", []) or []:
            title = item.get("title", "")
            if not title:
                continue
            results.append(
                SearchResult(
                    title=title,
                    url=f"{base}/wiki/{quote(title.replace(' ', '_'))}",
                    snippet=strip_html(item.get("snippet", "")),
                    source_type=SourceType.WIKIPEDIA,
                    provider=self.name,
                )
            )
        return results
