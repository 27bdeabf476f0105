"""Summary: Tests for SQLite persistence.

Importance: Ensures ingestion, bills, and derived state survive restarts.
Alternatives: Use an in-memory store for all tests.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

from inboxledger.models import (
    AiRequest,
    AiResponse,
    Bill,
    ClassifiedMessage,
    Message,
    PaymentVerification,
)
from inboxledger.storage.sqlite_store import SqliteStore, bill_from_dict, bill_to_dict


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "store.db"))
    store.initialize()
    return store


def _bill(bill_id: str = "bill-abc", status: str = "pending") -> Bill:
    return Bill(
        bill_id=bill_id,
        merge_key="powerco:4821",
        bill_name="PowerCo bill",
        provider="PowerCo",
        account_number="4821",
        amount=Decimal("128.50"),
        currency="USD",
        due_date=date(2025, 3, 10),
        category="utility",
        priority="high",
        status=status,
        payment_link="https://www.powerco.com/pay",
        source_message_ids=("m1",),
        created_at=datetime(2025, 2, 24, 8, 30),
        last_updated=datetime(2025, 2, 24, 8, 30),
        last_notice_at=datetime(2025, 2, 24, 8, 30),
        last_notice_id="m1",
    )


def _classified(message: Message, category: str = "regular") -> ClassifiedMessage:
    return ClassifiedMessage(
        message=message,
        category=category,
        confidence_source="rule",
        score=1,
        rule_set_version="v1",
        matched_rules=("regular:digest",),
    )


def test_messages_are_idempotent(store: SqliteStore, make_message: Callable[..., Message]) -> None:
    """Summary: Verify redelivered message IDs are ignored.

    Importance: Mail feeds redeliver messages routinely.
    Alternatives: Overwrite the stored copy.
    """

    first = make_message("m1", "Hello", body="original")
    duplicate = make_message("m1", "Hello again", body="changed")
    assert store.save_messages([first]) == 1
    assert store.save_messages([duplicate]) == 0
    stored = store.get_message("m1")
    assert stored == first
    assert store.get_message("missing") is None


def test_message_ordering(store: SqliteStore, make_message: Callable[..., Message]) -> None:
    """Summary: Ensure listing is newest first and history is oldest first.

    Importance: The UI and the replay need opposite orders.
    Alternatives: Sort in callers.
    """

    store.save_messages(
        [
            make_message("b", "second", timestamp=datetime(2025, 2, 2)),
            make_message("a", "first", timestamp=datetime(2025, 2, 1)),
            make_message("c", "tie", timestamp=datetime(2025, 2, 2)),
        ]
    )
    assert [item.message_id for item in store.list_messages()] == ["c", "b", "a"]
    assert [item.message_id for item in store.list_messages(limit=1)] == ["c"]
    assert [item.message_id for item in store.all_messages()] == ["a", "b", "c"]


def test_classifications_round_trip(
    store: SqliteStore, make_message: Callable[..., Message]
) -> None:
    """Summary: Verify classifications persist with their message and rule version.

    Importance: The classification cache is warmed from storage.
    Alternatives: Reclassify on every start.
    """

    message = make_message("m1", "Weekly digest")
    store.save_messages([message])
    store.save_classifications([_classified(message)])
    stored = store.list_classified()
    assert stored == [_classified(message)]
    assert store.list_classified(category="work") == []


def test_bills_round_trip(store: SqliteStore) -> None:
    """Summary: Ensure bills keep exact amounts and dates through storage.

    Importance: Decimal amounts must never drift through floats.
    Alternatives: Store amounts as REAL columns.
    """

    bill = _bill()
    assert bill_from_dict(bill_to_dict(bill)) == bill
    store.save_bills([bill, _bill("bill-def", status="paid")])
    assert store.list_bills(status="pending") == [bill]
    assert len(store.list_bills()) == 2


def test_dismissals_and_verifications(store: SqliteStore) -> None:
    """Summary: Verify dismissals and payment verifications persist.

    Importance: Both outlive reclassification runs.
    Alternatives: Derive them from bill status.
    """

    store.add_dismissal("bill-abc", date(2025, 3, 10))
    store.add_dismissal("bill-abc", date(2025, 3, 10))
    assert store.list_dismissals() == {("bill-abc", date(2025, 3, 10))}
    verification = PaymentVerification(
        bill_id="bill-abc",
        message_id="m2",
        verified_at=datetime(2025, 2, 27, 12, 0),
        amount=Decimal("128.50"),
        method="Credit Card",
        confirmation_number="PC-99812",
    )
    store.save_verifications([verification])
    assert store.list_verifications() == [verification]


def test_replace_derived_state(store: SqliteStore, make_message: Callable[..., Message]) -> None:
    """Summary: Ensure derived tables are swapped wholesale while dismissals stay.

    Importance: Reclassification must not leave stale rows behind.
    Alternatives: Upsert rows without deleting old ones.
    """

    message = make_message("m1", "Weekly digest")
    store.save_messages([message])
    store.save_classifications([_classified(message)])
    store.save_bills([_bill("bill-old")])
    store.add_dismissal("bill-old", date(2025, 3, 10))

    store.replace_derived_state([_classified(message, "work")], [_bill("bill-new")], [])

    assert [item.category for item in store.list_classified()] == ["work"]
    assert [bill.bill_id for bill in store.list_bills()] == ["bill-new"]
    assert store.list_dismissals() == {("bill-old", date(2025, 3, 10))}
    assert store.counts()["payment_verifications"] == 0


def test_ai_audit_rows(store: SqliteStore) -> None:
    """Summary: Verify AI requests and responses are logged and listed.

    Importance: Fallback calls must be auditable.
    Alternatives: Rely on application logs.
    """

    request_id = store.log_ai_request(
        AiRequest(
            provider="mock",
            model="mock",
            prompt="Classify",
            purpose="email_classification",
            timestamp=datetime(2025, 3, 1, 9, 0),
        )
    )
    store.log_ai_response(
        AiResponse(request_id=request_id, response_text="{}", latency_ms=3, token_estimate=5)
    )
    requests = store.list_ai_requests(5)
    responses = store.list_ai_responses(5)
    assert requests[0].id == request_id
    assert requests[0].timestamp == "2025-03-01T09:00:00"
    assert responses[0].request_id == request_id
    assert store.counts()["ai_requests"] == 1
