from __future__ import annotations

import asyncio

import httpx
import pytest

from deepresearch.tools.content_extractor import (
    ContentExtractor,
    ExtractedContent,
    is_pdf_url,
    make_excerpt,
    parse_html,
    pdf_title,
    score_quality,
)

ARTICLE_BODY = " ".join(
    f"Sentence {i} explains how superconducting qubits keep coherence for longer." for i in range(60)
)

ARTICLE_HTML = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <title>Fallback title</title>
  <meta property="og:title" content="Qubits, explained">
  <meta name="author" content="Grace Hopper">
  <meta property="article:published_time" content="2024-03-05T10:00:00Z">
  <meta name="description" content="A primer on qubits.">
  <meta name="keywords" content="quantum, qubits">
  <script>var tracking = 1;</script>
</head>
<body>
  <nav>Home | About | Contact</nav>
  <header>Site header</header>
  <article>
    <h1>Qubits, explained</h1>
    <p>{ARTICLE_BODY}</p>
    <img src="/img/qubit.png">
    <a href="/related">Related</a>
    <a href="#top">Top</a>
    <a href="javascript:void(0)">Share</a>
    <div class="advertisement">Buy now</div>
  </article>
  <footer>Copyright</footer>
</body>
</html>
"""


class _FakeResponse:
    def __init__(self, text="", *, status_code=200, headers=None, content=b""):
        self.text = text
        self.content = content
        self.status_code = status_code
        self.headers = headers or {"content-type": "text/html; charset=utf-8"}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("GET", "https://example.test")
            raise httpx.HTTPStatusError(
                "boom",
                request=request,
                response=httpx.Response(self.status_code, request=request),
            )


def test_parse_html_strips_boilerplate_and_reads_metadata():
    extracted = parse_html("https://example.com/posts/qubits", ARTICLE_HTML)

    assert extracted.title == "Qubits, explained"
    assert extracted.author == "Grace Hopper"
    assert extracted.publish_date.year == 2024
    assert "Site header" not in extracted.content
    assert "Home | About" not in extracted.content
    assert "Buy now" not in extracted.content
    assert "superconducting qubits" in extracted.content
    assert extracted.metadata == {
        "language": "en",
        "description": "A primer on qubits.",
        "keywords": "quantum, qubits",
    }
    assert extracted.images == ["https://example.com/img/qubit.png"]
    assert extracted.links == ["https://example.com/related"]
    assert extracted.content_type == "html"


def test_parse_html_falls_back_to_untitled_and_body_text():
    extracted = parse_html("https://example.com", "<html><body><p>Short page.</p></body></html>")

    assert extracted.title == "Untitled"
    assert extracted.content == "Short page."
    assert extracted.author is None
    assert extracted.publish_date is None


def test_score_quality_penalizes_short_paywalled_pages():
    content = " ".join(["word"] * 80)

    bare_score, _ = score_quality(content, "<p>" + content + "</p>")
    teaser = content + " Subscribe to continue reading."
    raw_html = "<html>" + "<script></script>" * 21 + "<p>" + teaser + "</p></html>"
    score, issues = score_quality(teaser, raw_html)

    assert bare_score == pytest.approx(0.7)
    assert score < 0.3
    assert "Very short content" in issues
    assert "Possible paywall" in issues


def test_score_quality_flags_error_pages_and_script_heavy_markup():
    raw_html = "<script></script>" * 25 + "<p>404 page not found</p>" + " " * 2000

    score, issues = score_quality("404 page not found", raw_html)

    assert score == 0.0
    assert "Possible error page" in issues
    assert "Many scripts (possible ads)" in issues
    assert "Low content-to-HTML ratio" in issues


def test_score_quality_keeps_long_clean_articles_high():
    content = " ".join(["insight"] * 600)

    score, issues = score_quality(content, content)

    assert score == 1.0
    assert issues == []


def test_make_excerpt_prefers_sentence_boundary():
    text = "A" * 250 + ". " + "B" * 200
    assert make_excerpt(text) == "A" * 250 + "."


def test_make_excerpt_cuts_at_word_with_ellipsis():
    text = " ".join(["lorem"] * 100)
    excerpt = make_excerpt(text)
    assert excerpt.endswith("...")
    assert len(excerpt) <= 303
    assert make_excerpt("short") == "short"


def test_pdf_helpers():
    assert is_pdf_url("https://example.com/paper.PDF")
    assert is_pdf_url("https://example.com/paper.pdf?download=1")
    assert not is_pdf_url("https://example.com/paper.html")
    assert pdf_title("1\nA Survey of Quantum Error Correction\nAbstract") == "A Survey of Quantum Error Correction"
    assert pdf_title("x\ny") == "PDF Document"


@pytest.mark.asyncio
async def test_extract_returns_none_on_http_error(monkeypatch):
    async def fake_get(self, url, headers=None):
        return _FakeResponse(status_code=404)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)

    assert await ContentExtractor().extract("https://example.com/missing") is None


@pytest.mark.asyncio
async def test_extract_batch_returns_every_url(monkeypatch):
    async def fake_get(self, url, headers=None):
        if "broken" in url:
            raise httpx.ConnectError("refused")
        return _FakeResponse(ARTICLE_HTML)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)

    urls = [
        "https://example.com/a",
        "https://broken.example.com/b",
        "https://example.com/c",
        "https://example.com/a",
    ]
    results = await ContentExtractor().extract_batch(urls, concurrency=2)

    assert set(results) == set(urls)
    assert isinstance(results["https://example.com/a"], ExtractedContent)
    assert results["https://broken.example.com/b"] is None
    assert results["https://example.com/c"].title == "Qubits, explained"


@pytest.mark.asyncio
async def test_extract_batch_bounds_concurrent_fetches(monkeypatch):
    in_flight = 0
    peak = 0

    async def fake_get(self, url, headers=None):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return _FakeResponse(ARTICLE_HTML)

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)

    urls = [f"https://example.com/{i}" for i in range(10)]
    results = await ContentExtractor().extract_batch(urls, concurrency=2)

    assert peak == 2
    assert all(isinstance(results[url], ExtractedContent) for url in urls)


@pytest.mark.asyncio
async def test_check_accessibility(monkeypatch):
    async def fake_head(self, url, headers=None):
        return _FakeResponse(status_code=403 if "private" in url else 200)

    monkeypatch.setattr(httpx.AsyncClient, "head", fake_head)

    extractor = ContentExtractor()
    assert await extractor.check_accessibility("https://example.com") is True
    assert await extractor.check_accessibility("https://private.example.com") is False
