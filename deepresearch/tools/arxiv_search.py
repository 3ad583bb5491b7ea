from __future__ import annotations

import xml.etree.ElementTree as ET

from deepresearch.models.research import SourceType
from deepresearch.tools.search_provider import (
    SearchOptions,
    SearchProvider,
    SearchResult,
    parse_timestamp,
)
from deepresearch.tools.web_utils import collapse_whitespace

ARXIV_API_URL = "http://export.arxiv.org/api/query"
ATOM_NS = {"a": "http://www.w3.org/2005/Atom"}


def parse_arxiv_feed(xml_text: str, *, provider: str = "arxiv") -> list[SearchResult]:
    """Map an arXiv Atom feed into search results."""
    root = ET.fromstring(xml_text)
    results: list[SearchResult] = []
    for entry in root.findall("a:entry", ATOM_NS):
        title = collapse_whitespace(entry.findtext("a:title", default="", namespaces=ATOM_NS))
        url = (entry.findtext("a:id", default="", namespaces=ATOM_NS) or "").strip()
        if not title or not url:
            continue
        summary = collapse_whitespace(entry.findtext("a:summary", default="", namespaces=ATOM_NS))
        author = entry.findtext("a:author/a:name", default="", namespaces=ATOM_NS).strip()
        results.append(
            SearchResult(
                title=title,
                url=url,
                snippet=summary[:200],
                author=author or None,
                publish_date=parse_timestamp(
                    entry.findtext("a:published", default="", namespaces=ATOM_NS)
                ),
                source_type=SourceType.ARXIV,
                provider=provider,
            )
        )
    return results


class ArxivSearchProvider(SearchProvider):
    """arXiv preprint search. Public API, no key required."""

    name = "arxiv"
    category = "academic"
    max_per_second = 1
    max_concurrent = 1

    async def _search(self, query: str, options: SearchOptions) -> list[SearchResult]:
        response = await self._get(
            ARXIV_API_URL,
            params={
                "search_query": f"all:{query}",
                "start": 0,
                "max_results": options.max_results,
                "sortBy": "relevance",
                "sortOrder": "descending",
            },
        )
        return parse_arxiv_feed(response.text, provider=self.name)
