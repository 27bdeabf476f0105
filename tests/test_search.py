"""Summary: Tests for relevance search and category statistics.

Importance: Search ranking decides what users see first.
Alternatives: Only test search through the CLI.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from inboxledger.models import ClassifiedMessage, Message
from inboxledger.search import category_stats, expand_terms, relevance_score, search

NOW = datetime(2025, 3, 1, 9, 0, 0)
SYNONYMS = {"bill": ("invoice", "statement"), "meeting": ("standup",)}


def _classified(message: Message, category: str) -> ClassifiedMessage:
    return ClassifiedMessage(
        message=message,
        category=category,
        confidence_source="rule",
        score=3,
        rule_set_version="test",
    )


def test_expand_terms_adds_synonyms_and_words() -> None:
    """Summary: Verify queries expand to synonyms and longer words.

    Importance: Users rarely type the exact wording of a notice.
    Alternatives: Match literal queries only.
    """

    assert expand_terms("electric bill", SYNONYMS) == [
        "electric bill",
        "invoice",
        "statement",
        "electric",
        "bill",
    ]
    assert expand_terms("   ", SYNONYMS) == []


def test_relevance_score_components(make_message: Callable[..., Message]) -> None:
    """Summary: Ensure subject hits, recency, unread, and category add to the score.

    Importance: Urgent, recent, and unread mail should rank higher.
    Alternatives: Rank by term frequency only.
    """

    message = make_message(
        "s-1", "Invoice ready", body="Your invoice is attached.", timestamp=datetime(2025, 3, 1, 1, 0)
    )
    terms = expand_terms("invoice", SYNONYMS)
    # 2 occurrences + 5 subject term + 10 exact subject + 5 recent + 2 unread + 5 important
    assert relevance_score(_classified(message, "important"), "invoice", terms, NOW) == 29
    miss = make_message("s-2", "Hello", body="nothing")
    assert relevance_score(_classified(miss, "important"), "invoice", terms, NOW) == 0


def test_search_ranks_filters_and_counts(make_message: Callable[..., Message]) -> None:
    """Summary: Verify ranking, category filters, unread filters, and facet counts.

    Importance: Backs the search command and endpoint.
    Alternatives: Return unranked matches.
    """

    statement = _classified(
        make_message("a", "Your March statement", body="statement attached", read=True),
        "subscription",
    )
    urgent = _classified(
        make_message("b", "Overdue bill", body="your bill is overdue", timestamp=datetime(2025, 2, 28)),
        "emergency",
    )
    unrelated = _classified(make_message("c", "Dinner", body="family dinner"), "personal")
    corpus = [statement, urgent, unrelated]

    result = search(corpus, "bill", SYNONYMS, NOW)
    assert [item.message_id for item in result.messages] == ["b", "a"]
    assert result.total_count == 2
    assert result.category_counts["emergency"] == 1
    assert result.category_counts["subscription"] == 1

    unread = search(corpus, "bill", SYNONYMS, NOW, unread_only=True)
    assert [item.message_id for item in unread.messages] == ["b"]
    filtered = search(corpus, "bill", SYNONYMS, NOW, category="subscription", limit=1)
    assert [item.message_id for item in filtered.messages] == ["a"]


def test_category_stats(make_message: Callable[..., Message]) -> None:
    """Summary: Ensure urgent, misc, total, and unread buckets are computed.

    Importance: Dashboards show these counts directly.
    Alternatives: Count in SQL per request.
    """

    corpus = [
        _classified(make_message("1", "a"), "emergency"),
        _classified(make_message("2", "b", read=True), "important"),
        _classified(make_message("3", "c"), "regular"),
    ]
    stats = category_stats(corpus)
    assert stats["urgent"] == 2
    assert stats["misc"] == 1
    assert stats["total"] == 3
    assert stats["unread"] == 2
    assert stats["work"] == 0
