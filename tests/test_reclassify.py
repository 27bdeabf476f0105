"""Summary: Tests for full-history reclassification.

Importance: Rule changes must rebuild the same state every time.
Alternatives: Patch only affected messages after a rule edit.
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path

import pytest

from inboxledger.classifier import Classifier
from inboxledger.email import MockEmailProvider
from inboxledger.extractor import BillExtractor
from inboxledger.models import Message
from inboxledger.reclassify import ReclassificationDriver, processing_order
from inboxledger.rules import RuleSet
from inboxledger.tracker import BillAlertTracker

FIXTURE = Path(__file__).resolve().parents[1] / "data" / "mock_messages.json"


def _messages() -> list[Message]:
    return MockEmailProvider(FIXTURE).fetch_recent(50)


def _driver(rule_set: RuleSet) -> ReclassificationDriver:
    tracker = BillAlertTracker(now=lambda: datetime(2025, 3, 1, 9, 0, 0))
    return ReclassificationDriver(Classifier(rule_set), BillExtractor(), tracker)


def test_processing_order_sorts_and_dedupes() -> None:
    """Summary: Verify replay order is timestamp then ID with duplicates removed.

    Importance: Replays must be order-independent of storage.
    Alternatives: Trust insertion order.
    """

    messages = _messages()
    shuffled = list(reversed(messages)) + messages[:2]
    ordered = processing_order(shuffled)
    assert [message.message_id for message in ordered] == [
        message.message_id for message in messages
    ]


@pytest.mark.asyncio
async def test_reclassification_is_deterministic(default_rules: RuleSet) -> None:
    """Summary: Ensure two runs over the same history produce identical bills.

    Importance: Reclassification is a pure function of history and rules.
    Alternatives: Compare only bill counts.
    """

    first = await _driver(default_rules).run(_messages())
    second = await _driver(default_rules).run(list(reversed(_messages())))
    assert first.bills == second.bills
    assert first.verifications == second.verifications
    assert [item.category for item in first.classified] == [
        item.category for item in second.classified
    ]
    assert first.rule_set_version == default_rules.version


@pytest.mark.asyncio
async def test_reclassification_rebuilds_fixture_bills(default_rules: RuleSet) -> None:
    """Summary: Verify the fixture history yields the expected bills.

    Importance: Exercises classification, extraction, and verification together.
    Alternatives: Test each stage in isolation only.
    """

    result = await _driver(default_rules).run(_messages())
    by_provider = {bill.provider: bill for bill in result.bills}
    assert set(by_provider) == {"PowerCo", "Netflix", "Maple Court Leasing"}
    assert by_provider["PowerCo"].status == "paid"
    assert by_provider["Netflix"].low_confidence_key is True
    assert by_provider["Maple Court Leasing"].priority == "critical"
    assert [item.message_id for item in result.verifications] == ["msg-007"]


@pytest.mark.asyncio
async def test_dismissals_carry_over(default_rules: RuleSet) -> None:
    """Summary: Ensure dismissed cycles stay dismissed after reclassification.

    Importance: Only user decisions survive a rebuild.
    Alternatives: Ask the user to dismiss again.
    """

    baseline = await _driver(default_rules).run(_messages())
    netflix = next(bill for bill in baseline.bills if bill.provider == "Netflix")
    rebuilt = await _driver(default_rules).run(
        _messages(), dismissed_cycles={(netflix.bill_id, date(2025, 3, 5))}
    )
    again = rebuilt.collection.get(netflix.bill_id)
    assert again is not None
    assert again.status == "dismissed"


@pytest.mark.asyncio
async def test_rule_change_moves_bills(default_rules: RuleSet) -> None:
    """Summary: Verify disabling the billing category removes bills it produced.

    Importance: No bill may survive whose classification no longer qualifies.
    Alternatives: Keep historical bills after rule edits.
    """

    updated = default_rules.with_enabled("subscription", False).with_keyword("work", "statement")
    result = await _driver(updated).run(_messages())
    providers = {bill.provider for bill in result.bills}
    assert "Maple Court Leasing" not in providers
    assert result.rule_set_version == updated.version
