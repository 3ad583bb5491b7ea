from __future__ import annotations

from datetime import datetime

from deepresearch.models.research import CitationStyle, Source

UNKNOWN_AUTHOR = "Unknown"
NO_DATE = "n.d."


def format_citation(
    style: CitationStyle | str,
    *,
    title: str,
    url: str,
    author: str | None = None,
    published: datetime | None = None,
    index: int = 1,
) -> str:
    author = author or UNKNOWN_AUTHOR
    year = str(published.year) if published else NO_DATE
    style = style.value if isinstance(style, CitationStyle) else str(style).lower()

    if style == "apa":
        return f"{author}. ({year}). {title}. Retrieved from {url}"
    if style == "mla":
        return f'{author}. "{title}." Web. {year}. <{url}>.'
    if style == "chicago":
        return f'{author}. "{title}." Accessed {year}. {url}.'
    if style == "ieee":
        return f'[{index}] {author}, "{title}," {year}. [Online]. Available: {url}'
    return f"{author} ({year}). {title}. {url}"


def build_bibliography(sources: list[Source], style: CitationStyle | str) -> list[str]:
    return [
        format_citation(
            style,
            title=source.title,
            url=source.url,
            author=source.author,
            published=source.publish_date,
            index=i,
        )
        for i, source in enumerate(sources, start=1)
    ]
