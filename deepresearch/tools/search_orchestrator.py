from __future__ import annotations

import asyncio
from collections import Counter
from typing import Iterable

from deepresearch.models.research import ResearchConfig
from deepresearch.services import logger as log_service
from deepresearch.tools.arxiv_search import ArxivSearchProvider
from deepresearch.tools.bing_search import BingSearchProvider
from deepresearch.tools.brave_search import BraveSearchProvider
from deepresearch.tools.exa_search import ExaSearchProvider
from deepresearch.tools.google_search import GoogleSearchProvider
from deepresearch.tools.news_search import NewsApiSearchProvider
from deepresearch.tools.reddit_search import RedditSearchProvider
from deepresearch.tools.scholar_search import ScholarSearchProvider
from deepresearch.tools.search_provider import SearchOptions, SearchProvider, SearchResult
from deepresearch.tools.stackoverflow_search import StackOverflowSearchProvider
from deepresearch.tools.tavily_search import TavilySearchProvider
from deepresearch.tools.web_utils import normalize_url
from deepresearch.tools.wikipedia_search import WikipediaSearchProvider


def build_default_providers() -> list[SearchProvider]:
    """All adapters, configured from settings. Keyed providers report unavailable without keys."""
    return [
        GoogleSearchProvider(),
        BingSearchProvider(),
        BraveSearchProvider(),
        TavilySearchProvider(),
        ExaSearchProvider(),
        ScholarSearchProvider(),
        NewsApiSearchProvider(),
        WikipediaSearchProvider(),
        ArxivSearchProvider(),
        RedditSearchProvider(),
        StackOverflowSearchProvider(),
    ]


def dedupe_results(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Keep one entry per normalized URL.

    First seen wins; a later entry replaces it in place only when both carry
    scores and the later one is strictly higher.
    """
    by_url: dict[str, SearchResult] = {}
    for result in results:
        key = normalize_url(result.url)
        existing = by_url.get(key)
        if existing is None:
            by_url[key] = result
            continue
        if result.score is not None and existing.score is not None and result.score > existing.score:
            by_url[key] = result
    return list(by_url.values())


def rank_results(results: list[SearchResult]) -> list[SearchResult]:
    if not any(r.score is not None for r in results):
        return results
    return sorted(results, key=lambda r: r.score if r.score is not None else 0.0, reverse=True)


class SearchOrchestrator:
    """Fans a query out to every available provider and merges the results."""

    def __init__(self, providers: list[SearchProvider] | None = None):
        self.providers = providers if providers is not None else build_default_providers()
        log_service.log_event(
            event_type="search_providers_initialized",
            message="Search providers initialized",
            providers=self.available_providers(),
        )

    def available_providers(self) -> list[str]:
        return [p.name for p in self.providers if p.is_available()]

    def providers_for_config(self, config: ResearchConfig) -> list[str]:
        """Available provider names after applying the session's source toggles."""
        excluded_categories: set[str] = set()
        if not config.include_academic:
            excluded_categories.add("academic")
        if not config.include_news:
            excluded_categories.add("news")
        if not config.include_forums:
            excluded_categories.add("forum")
        return [
            p.name
            for p in self.providers
            if p.is_available() and p.category not in excluded_categories
        ]

    async def search_all(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        return await self._fan_out(
            [p for p in self.providers if p.is_available()],
            query,
            options or SearchOptions(),
        )

    async def search_providers(
        self,
        provider_names: list[str],
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        wanted = set(provider_names)
        selected = [p for p in self.providers if p.name in wanted and p.is_available()]
        return await self._fan_out(selected, query, options or SearchOptions())

    async def _fan_out(
        self,
        providers: list[SearchProvider],
        query: str,
        options: SearchOptions,
    ) -> list[SearchResult]:
        if not providers:
            return []

        settled = await asyncio.gather(
            *(provider.search(query, options) for provider in providers),
            return_exceptions=True,
        )

        merged: list[SearchResult] = []
        for provider, outcome in zip(providers, settled):
            if isinstance(outcome, BaseException):
                log_service.log_event(
                    event_type="provider_error",
                    message="Provider search failed",
                    provider=provider.name,
                    error=str(outcome),
                )
                continue
            merged.extend(outcome)

        unique = rank_results(dedupe_results(merged))[: max(options.max_results, 0)]

        log_service.log_event(
            event_type="search_completed",
            message="Search completed",
            query=query[:100],
            total=len(unique),
            by_provider=dict(Counter(r.provider for r in unique)),
        )
        return unique
