from __future__ import annotations

from datetime import datetime, timezone

from deepresearch.models.research import Credibility, SourceType, clamp01
from deepresearch.tools.content_extractor import ExtractedContent
from deepresearch.tools.search_provider import SearchResult

HIGH_AUTHORITY_DOMAINS = (".edu", ".gov", ".org")
DEFAULT_BIAS = 0.3

# (max age in days, score), checked in order
RECENCY_TIERS = ((30, 1.0), (180, 0.9), (365, 0.7), (730, 0.5))
STALE_RECENCY = 0.3
UNKNOWN_RECENCY = 0.5


def authority_score(source_type: SourceType, url: str, author: str | None) -> float:
    source_type = SourceType(source_type)
    if source_type in (SourceType.ACADEMIC, SourceType.ARXIV):
        score = 0.9
    elif source_type == SourceType.WIKIPEDIA:
        score = 0.8
    elif source_type == SourceType.NEWS:
        score = 0.7
    elif author:
        score = 0.6
    else:
        score = 0.5

    if any(domain in (url or "") for domain in HIGH_AUTHORITY_DOMAINS):
        score = min(1.0, score + 0.1)
    return score


def recency_score(publish_date: datetime | None, now: datetime | None = None) -> float:
    if publish_date is None:
        return UNKNOWN_RECENCY
    now = now or datetime.now(timezone.utc)
    if publish_date.tzinfo is None:
        publish_date = publish_date.replace(tzinfo=timezone.utc)
    age_days = (now - publish_date).total_seconds() / 86400
    for max_age, score in RECENCY_TIERS:
        if age_days < max_age:
            return score
    return STALE_RECENCY


def score_credibility(
    result: SearchResult,
    extracted: ExtractedContent | None = None,
    now: datetime | None = None,
) -> Credibility:
    """Authority, recency and bias folded into one overall score in [0, 1]."""
    author = (extracted.author if extracted else None) or result.author
    publish_date = (extracted.publish_date if extracted else None) or result.publish_date

    authority = authority_score(result.source_type, result.url, author)
    recency = recency_score(publish_date, now)
    bias = DEFAULT_BIAS
    overall = authority * 0.4 + recency * 0.3 + (1.0 - bias) * 0.3
    return Credibility(
        authority=clamp01(authority),
        recency=clamp01(recency),
        bias=clamp01(bias),
        overall=clamp01(overall),
    )
