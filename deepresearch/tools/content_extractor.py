from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

import httpx
from bs4 import BeautifulSoup
from dateutil import parser as date_parser
from pypdf import PdfReader

from deepresearch.config import settings
from deepresearch.services import logger as log_service
from deepresearch.tools.web_utils import absolute_url, collapse_whitespace

REMOVED_SELECTORS = (
    "script, style, nav, header, footer, aside, iframe, noscript",
    ".advertisement, .ad, .social-share, .comments",
)

CONTENT_SELECTORS = (
    "article",
    '[role="main"]',
    "main",
    ".article-content",
    ".post-content",
    ".entry-content",
    ".content",
    "#content",
    ".main-content",
)

MIN_CONTAINER_CHARS = 500
MAX_IMAGES = 10
MAX_LINKS = 50
EXCERPT_LENGTH = 300
PDF_QUALITY_SCORE = 0.7

PAYWALL_PHRASES = (
    "paywall",
    "subscribe to continue",
    "premium content",
    "members only",
    "register to read",
)
ERROR_PHRASES = ("404", "page not found", "error occurred", "access denied")


@dataclass
class ExtractedContent:
    url: str
    title: str
    content: str
    excerpt: str
    word_count: int
    quality_score: float
    quality_issues: list[str] = field(default_factory=list)
    author: str | None = None
    publish_date: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    images: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    content_type: str = "html"


def is_pdf_url(url: str) -> bool:
    lowered = url.lower()
    return lowered.endswith(".pdf") or ".pdf?" in lowered


def count_words(text: str) -> int:
    return len(text.split())


def score_quality(content: str, raw_html: str, word_count: int | None = None) -> tuple[float, list[str]]:
    """Heuristic extraction quality in [0, 1] plus the issues that lowered it."""
    score = 1.0
    issues: list[str] = []
    words = count_words(content) if word_count is None else word_count
    lowered = content.lower()

    if words < 100:
        score -= 0.3
        issues.append("Very short content")
    elif words < 300:
        score -= 0.1
        issues.append("Short content")

    if raw_html.count("<script") > 20:
        score -= 0.2
        issues.append("Many scripts (possible ads)")

    if any(phrase in lowered for phrase in PAYWALL_PHRASES):
        score -= 0.3
        issues.append("Possible paywall")

    if raw_html and len(content) / len(raw_html) < 0.1:
        score -= 0.2
        issues.append("Low content-to-HTML ratio")

    if words < 500 and any(phrase in lowered for phrase in ERROR_PHRASES):
        score -= 0.5
        issues.append("Possible error page")

    return max(0.0, min(1.0, score)), issues


def make_excerpt(content: str, max_length: int = EXCERPT_LENGTH) -> str:
    """Leading excerpt cut at a sentence end past 70% of the limit, else at a word."""
    if len(content) <= max_length:
        return content
    truncated = content[:max_length]
    last_sentence_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_sentence_end > max_length * 0.7:
        return truncated[: last_sentence_end + 1]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        truncated = truncated[:last_space]
    return truncated + "..."


def parse_date(value: str | None) -> datetime | None:
    if not value or not value.strip():
        return None
    try:
        parsed = date_parser.parse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _meta(soup: BeautifulSoup, **attrs: str) -> str | None:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    value = tag.get("content")
    return value if isinstance(value, str) else None


def _first_text(soup: BeautifulSoup, selector: str) -> str | None:
    tag = soup.select_one(selector)
    return tag.get_text(" ", strip=True) if tag is not None else None


def _first_hit(strategies: list[Callable[[], str | None]]) -> str | None:
    for strategy in strategies:
        value = strategy()
        if value and value.strip():
            return collapse_whitespace(value)
    return None


def extract_title(soup: BeautifulSoup) -> str:
    return _first_hit(
        [
            lambda: _meta(soup, property="og:title"),
            lambda: _meta(soup, name="twitter:title"),
            lambda: _first_text(soup, "h1"),
            lambda: soup.title.get_text() if soup.title else None,
            lambda: _meta(soup, name="title"),
        ]
    ) or "Untitled"


def extract_author(soup: BeautifulSoup) -> str | None:
    return _first_hit(
        [
            lambda: _meta(soup, name="author"),
            lambda: _meta(soup, property="article:author"),
            lambda: _first_text(soup, '[rel="author"]'),
            lambda: _first_text(soup, ".author"),
            lambda: _first_text(soup, ".byline"),
        ]
    )


def extract_publish_date(soup: BeautifulSoup) -> datetime | None:
    def time_datetime() -> str | None:
        tag = soup.select_one("time[datetime]")
        value = tag.get("datetime") if tag is not None else None
        return value if isinstance(value, str) else None

    strategies: list[Callable[[], str | None]] = [
        lambda: _meta(soup, property="article:published_time"),
        lambda: _meta(soup, name="publish-date"),
        lambda: _meta(soup, name="date"),
        time_datetime,
        lambda: _first_text(soup, ".published-date"),
        lambda: _first_text(soup, ".publish-date"),
    ]
    for strategy in strategies:
        parsed = parse_date(strategy())
        if parsed is not None:
            return parsed
    return None


def extract_metadata(soup: BeautifulSoup) -> dict[str, str]:
    metadata: dict[str, str] = {}
    html_tag = soup.find("html")
    language = html_tag.get("lang") if html_tag is not None else None
    if isinstance(language, str) and language.strip():
        metadata["language"] = language.strip()
    description = _meta(soup, name="description") or _meta(soup, property="og:description")
    if description:
        metadata["description"] = collapse_whitespace(description)
    keywords = _meta(soup, name="keywords")
    if keywords:
        metadata["keywords"] = collapse_whitespace(keywords)
    return metadata


def extract_main_content(soup: BeautifulSoup) -> str:
    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is None:
            continue
        text = collapse_whitespace(container.get_text(" "))
        if len(text) > MIN_CONTAINER_CHARS:
            return text
    body = soup.body or soup
    return collapse_whitespace(body.get_text(" "))


def extract_images(soup: BeautifulSoup, base_url: str) -> list[str]:
    images: list[str] = []
    for img in soup.find_all("img", src=True):
        resolved = absolute_url(base_url, img["src"])
        if resolved and resolved not in images:
            images.append(resolved)
        if len(images) >= MAX_IMAGES:
            break
    return images


def extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        resolved = absolute_url(base_url, anchor["href"])
        if not resolved or resolved in seen:
            continue
        seen.add(resolved)
        links.append(resolved)
        if len(links) >= MAX_LINKS:
            break
    return links


def parse_html(url: str, raw_html: str) -> ExtractedContent:
    """Boilerplate-stripped content, metadata and quality for one HTML page."""
    soup = BeautifulSoup(raw_html, "html.parser")
    for selector in REMOVED_SELECTORS:
        for tag in soup.select(selector):
            tag.decompose()

    content = extract_main_content(soup)
    word_count = count_words(content)
    score, issues = score_quality(content, raw_html, word_count)
    return ExtractedContent(
        url=url,
        title=extract_title(soup),
        content=content,
        excerpt=make_excerpt(content),
        word_count=word_count,
        quality_score=score,
        quality_issues=issues,
        author=extract_author(soup),
        publish_date=extract_publish_date(soup),
        metadata=extract_metadata(soup),
        images=extract_images(soup, url),
        links=extract_links(soup, url),
        content_type="html",
    )


def pdf_title(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    for line in lines[:5]:
        if 10 < len(line) < 200:
            return line
    return "PDF Document"


def parse_pdf(url: str, data: bytes) -> ExtractedContent:
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    raw_text = "\n".join(pages)
    content = collapse_whitespace(raw_text)
    excerpt = make_excerpt(content)
    return ExtractedContent(
        url=url,
        title=pdf_title(raw_text),
        content=content,
        excerpt=excerpt,
        word_count=count_words(content),
        # Text layers in PDFs are rarely boilerplate.
        quality_score=PDF_QUALITY_SCORE,
        metadata={"description": excerpt},
        content_type="pdf",
    )


class ContentExtractor:
    """Fetches pages or PDFs and turns them into scored, structured content."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        pdf_timeout: float | None = None,
        user_agent: str | None = None,
    ):
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.pdf_timeout = pdf_timeout if pdf_timeout is not None else settings.pdf_timeout_seconds
        self.user_agent = user_agent or settings.extract_user_agent

    def _headers(self, accept: str) -> dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": accept}

    async def _fetch(self, url: str, *, timeout: float, accept: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url, headers=self._headers(accept))
            response.raise_for_status()
            return response

    async def extract(self, url: str) -> ExtractedContent | None:
        """Extract one URL. Any fetch or parse failure yields None."""
        try:
            if is_pdf_url(url):
                response = await self._fetch(url, timeout=self.pdf_timeout, accept="application/pdf")
                return await asyncio.to_thread(parse_pdf, url, response.content)

            response = await self._fetch(
                url,
                timeout=self.timeout,
                accept="text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            )
            content_type = response.headers.get("content-type", "").lower()
            if "application/pdf" in content_type:
                return await asyncio.to_thread(parse_pdf, url, response.content)
            return parse_html(url, response.text)
        except Exception as e:
            log_service.log_event(
                event_type="extraction_error",
                message="Content extraction failed",
                url=url,
                error=str(e),
            )
            return None

    async def extract_batch(
        self,
        urls: list[str],
        concurrency: int | None = None,
    ) -> dict[str, ExtractedContent | None]:
        """Extract many URLs with a fixed-size worker pool over a shared queue."""
        workers = max(int(concurrency or settings.extract_concurrency), 1)
        queue: asyncio.Queue[str] = asyncio.Queue()
        for url in dict.fromkeys(urls):
            queue.put_nowait(url)

        results: dict[str, ExtractedContent | None] = {}

        async def worker() -> None:
            while True:
                try:
                    url = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[url] = await self.extract(url)

        await asyncio.gather(*(worker() for _ in range(min(workers, max(queue.qsize(), 1)))))

        log_service.log_event(
            event_type="extraction_batch_completed",
            message="Batch extraction completed",
            requested=len(results),
            succeeded=sum(1 for value in results.values() if value is not None),
        )
        return {url: results.get(url) for url in urls}

    async def check_accessibility(self, url: str) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=settings.accessibility_timeout_seconds,
                follow_redirects=True,
            ) as client:
                response = await client.head(url, headers=self._headers("*/*"))
            return response.status_code < 400
        except httpx.HTTPError:
            return False

