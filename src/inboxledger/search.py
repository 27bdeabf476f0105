"""Summary: Relevance search and category statistics over classified messages.

Importance: Lets users find mail by intent words with urgent and recent mail ranked first.
Alternatives: Use SQLite FTS with plain BM25 ranking.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from inboxledger.models import CATEGORY_ORDER, EMERGENCY, IMPORTANT, REGULAR, ClassifiedMessage

CATEGORY_BONUS = {EMERGENCY: 10, IMPORTANT: 5}


@dataclass(frozen=True)
class SearchResult:
    """Summary: Ranked search hits with category counts.

    Importance: Gives the UI both results and facet counts in one call.
    Alternatives: Return only the hits.
    """

    messages: list[ClassifiedMessage]
    total_count: int
    category_counts: dict[str, int]


def expand_terms(query: str, synonyms: dict[str, tuple[str, ...]]) -> list[str]:
    """Summary: Expand a query with synonyms and its longer words.

    Importance: A search for "bill" also finds invoices and statements.
    Alternatives: Match the literal query only.
    """

    lowered = query.strip().lower()
    if not lowered:
        return []
    terms = [lowered]
    for key, values in synonyms.items():
        if key in lowered:
            terms.extend(values)
    terms.extend(word for word in lowered.split() if len(word) > 3)
    return list(dict.fromkeys(terms))


def relevance_score(classified: ClassifiedMessage, query: str, terms: list[str], now: datetime) -> int:
    """Summary: Score one message against expanded search terms.

    Importance: Combines term frequency with recency, unread, and category boosts.
    Alternatives: Rank by date only.
    """

    message = classified.message
    subject = message.subject.lower()
    text = f"{subject} {message.content.lower()} {message.sender.name.lower()}"
    score = 0
    for term in terms:
        occurrences = text.count(term)
        if not occurrences:
            continue
        score += occurrences
        if term in subject:
            score += 5
    if score == 0:
        return 0
    if query.strip().lower() in subject:
        score += 10
    age = now - message.timestamp
    if age < timedelta(days=1):
        score += 5
    elif age < timedelta(days=7):
        score += 3
    if not message.read:
        score += 2
    return score + CATEGORY_BONUS.get(classified.category, 0)


def search(
    classified_messages: Iterable[ClassifiedMessage],
    query: str,
    synonyms: dict[str, tuple[str, ...]],
    now: datetime,
    category: str | None = None,
    unread_only: bool = False,
    limit: int = 20,
) -> SearchResult:
    """Summary: Search classified messages and rank the hits.

    Importance: Backs the search command and endpoint.
    Alternatives: Delegate to a dedicated search engine.
    """

    terms = expand_terms(query, synonyms)
    scored: list[tuple[int, ClassifiedMessage]] = []
    for item in classified_messages:
        if category and item.category != category:
            continue
        if unread_only and item.message.read:
            continue
        score = relevance_score(item, query, terms, now)
        if score > 0:
            scored.append((score, item))
    scored.sort(key=lambda pair: (-pair[0], -pair[1].message.timestamp.timestamp(), pair[1].message_id))
    counts = {name: 0 for name in CATEGORY_ORDER}
    for _, item in scored:
        counts[item.category] += 1
    return SearchResult(
        messages=[item for _, item in scored[:limit]],
        total_count=len(scored),
        category_counts=counts,
    )


def category_stats(classified_messages: Iterable[ClassifiedMessage]) -> dict[str, int]:
    """Summary: Count messages per category plus the urgent and misc buckets.

    Importance: Feeds dashboard badges.
    Alternatives: Count in SQL.
    """

    counts = {name: 0 for name in CATEGORY_ORDER}
    unread = 0
    for item in classified_messages:
        counts[item.category] += 1
        if not item.message.read:
            unread += 1
    counts["urgent"] = counts[EMERGENCY] + counts[IMPORTANT]
    counts["misc"] = counts[REGULAR]
    counts["total"] = sum(counts[name] for name in CATEGORY_ORDER)
    counts["unread"] = unread
    return counts
