"""Summary: Bill collection, merging, status derivation, and payment verification.

Importance: Keeps exactly one bill per provider and account while its lifecycle advances.
Alternatives: Emit one alert per billing notice and deduplicate downstream.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable

from inboxledger.extractor import detect_payment_confirmation, normalize_provider
from inboxledger.models import (
    IMPORTANT,
    PRIORITY_ORDER,
    REGULAR,
    STATUS_DISMISSED,
    STATUS_DUE_SOON,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_PENDING,
    TERMINAL_STATUSES,
    Bill,
    BillAlertSummary,
    BillFact,
    ClassifiedMessage,
    PaymentVerification,
)

logger = logging.getLogger(__name__)

VERIFICATION_CATEGORIES = frozenset({REGULAR, IMPORTANT})
ESSENTIAL_BILL_CATEGORIES = frozenset({"utility", "rent", "loan"})
DISMISSED_BY_USER = "user"

_STATUS_RANK = {STATUS_PENDING: 0, STATUS_DUE_SOON: 1, STATUS_OVERDUE: 2}


@dataclass(frozen=True)
class TrackerSettings:
    """Summary: Thresholds used for status and priority derivation.

    Importance: Keeps alert tuning in configuration rather than code.
    Alternatives: Hardcode thresholds inside the tracker.
    """

    due_soon_days: int = 7
    high_amount_threshold: Decimal = Decimal("500")
    medium_amount_threshold: Decimal = Decimal("100")
    payment_window_days: int = 45


class BillCollection:
    """Summary: Keyed store of bills plus the user's dismissal decisions.

    Importance: The single structure the merge step mutates; readers only see snapshots.
    Alternatives: Query the database for every merge decision.
    """

    def __init__(
        self,
        bills: Iterable[Bill] = (),
        dismissed_cycles: Iterable[tuple[str, date]] = (),
    ) -> None:
        self._bills: dict[str, Bill] = {bill.bill_id: bill for bill in bills}
        self.dismissed_cycles: set[tuple[str, date]] = set(dismissed_cycles)

    def get(self, bill_id: str) -> Bill | None:
        return self._bills.get(bill_id)

    def put(self, bill: Bill) -> None:
        self._bills[bill.bill_id] = bill

    def snapshot(self) -> tuple[Bill, ...]:
        """Summary: Return an immutable view of every bill ordered by ID.

        Importance: Readers never observe a half-merged bill.
        Alternatives: Hand out the live dictionary.
        """

        return tuple(self._bills[bill_id] for bill_id in sorted(self._bills))

    def __len__(self) -> int:
        return len(self._bills)


def merge_key(provider: str, account_suffix: str | None) -> tuple[str, bool]:
    """Summary: Compute the merge key and whether it is low confidence.

    Importance: Bills from the same provider and account collapse into one record.
    Alternatives: Key bills by the source message ID.
    """

    normalized = normalize_provider(provider) or "unknown"
    if account_suffix:
        return f"{normalized}:{account_suffix[-4:]}", False
    return normalized, True


def bill_id_for(key: str) -> str:
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:12]
    return f"bill-{digest}"


def days_until_due(due_date: date, today: date) -> int:
    return (due_date - today).days


def format_amount(amount: Decimal, currency: str = "USD") -> str:
    """Summary: Format an amount for display.

    Importance: Gives alerts and the CLI one consistent money format.
    Alternatives: Let every caller format amounts itself.
    """

    symbols = {"USD": "$", "EUR": "€", "GBP": "£", "PHP": "₱", "JPY": "¥"}
    symbol = symbols.get(currency)
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{amount:,.2f} {currency}"


def assess_priority(
    amount: Decimal,
    category: str,
    status: str,
    days_left: int,
    settings: TrackerSettings,
) -> str:
    """Summary: Derive a priority level from status, amount, and due date.

    Importance: Overdue and large due-soon bills always surface as critical.
    Alternatives: Sort alerts by due date only.
    """

    if status == STATUS_OVERDUE or (
        status == STATUS_DUE_SOON and amount >= settings.high_amount_threshold
    ):
        return "critical"
    if status == STATUS_DUE_SOON or amount >= settings.high_amount_threshold:
        level = "high"
    elif days_left <= 14 or amount >= settings.medium_amount_threshold:
        level = "medium"
    else:
        level = "low"
    if category in ESSENTIAL_BILL_CATEGORIES and level != "high":
        level = PRIORITY_ORDER[PRIORITY_ORDER.index(level) - 1]
    return level


class BillAlertTracker:
    """Summary: Applies bill facts, confirmations, and dismissals to a collection.

    Importance: Owns every bill state transition so status stays monotonic per cycle.
    Alternatives: Spread status updates across services.
    """

    def __init__(
        self,
        settings: TrackerSettings | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or TrackerSettings()
        self._now = now or datetime.utcnow

    def today(self) -> date:
        return self._now().date()

    def merge(self, collection: BillCollection, fact: BillFact) -> Bill:
        """Summary: Merge one bill fact into the collection.

        Importance: Later due dates open a new cycle; duplicates and stale notices only add sources.
        Alternatives: Replace the bill with every new notice.
        """

        key, low_confidence = merge_key(fact.provider, fact.account_suffix)
        bill_id = bill_id_for(key)
        existing = collection.get(bill_id)
        if low_confidence:
            logger.info("Bill %s merged on provider only (%s).", bill_id, key)
        if existing is None:
            bill = Bill(
                bill_id=bill_id,
                merge_key=key,
                bill_name=fact.bill_name,
                provider=fact.provider,
                account_number=fact.account_suffix,
                amount=fact.amount,
                currency=fact.currency,
                due_date=fact.due_date,
                category=fact.bill_category,
                priority="low",
                status=STATUS_PENDING,
                payment_link=fact.payment_link,
                source_message_ids=(fact.message_id,),
                created_at=fact.received_at,
                last_updated=fact.received_at,
                last_notice_at=fact.received_at,
                last_notice_id=fact.message_id,
                low_confidence_key=low_confidence,
            )
            logger.info("Created bill %s for %s due %s.", bill_id, fact.provider, fact.due_date)
        elif fact.due_date > existing.due_date:
            bill = replace(
                existing,
                bill_name=fact.bill_name,
                amount=fact.amount,
                currency=fact.currency,
                due_date=fact.due_date,
                category=fact.bill_category,
                payment_link=fact.payment_link or existing.payment_link,
                source_message_ids=_with_source(existing.source_message_ids, fact.message_id),
                last_updated=max(existing.last_updated, fact.received_at),
                last_notice_at=fact.received_at,
                last_notice_id=fact.message_id,
                cycle=existing.cycle + 1,
                status=STATUS_PENDING,
                paid_at=None,
                payment_message_id=None,
                dismissed_by=None,
            )
            logger.info("Bill %s started cycle %s due %s.", bill_id, bill.cycle, fact.due_date)
        elif fact.due_date == existing.due_date:
            bill = replace(
                existing,
                source_message_ids=_with_source(existing.source_message_ids, fact.message_id),
                last_updated=max(existing.last_updated, fact.received_at),
            )
            newer = (fact.received_at, fact.message_id) > (
                existing.last_notice_at,
                existing.last_notice_id,
            )
            # Paid and dismissed cycles are closed; later notices only add sources.
            if newer and existing.status not in TERMINAL_STATUSES:
                bill = replace(
                    bill,
                    amount=fact.amount,
                    currency=fact.currency,
                    payment_link=fact.payment_link or existing.payment_link,
                    last_notice_at=fact.received_at,
                    last_notice_id=fact.message_id,
                )
        else:
            bill = replace(
                existing,
                source_message_ids=_with_source(existing.source_message_ids, fact.message_id),
                last_updated=max(existing.last_updated, fact.received_at),
            )
        if bill.status not in TERMINAL_STATUSES and (bill.bill_id, bill.due_date) in collection.dismissed_cycles:
            bill = replace(bill, status=STATUS_DISMISSED, dismissed_by=DISMISSED_BY_USER)
        bill = self._derive(bill, self.today())
        collection.put(bill)
        return bill

    def refresh(self, collection: BillCollection) -> list[Bill]:
        """Summary: Recompute status and priority for every open bill.

        Importance: Status depends on the current date, not only on creation time.
        Alternatives: Compute status once when the bill is created.
        """

        today = self.today()
        changed: list[Bill] = []
        for bill in collection.snapshot():
            updated = self._derive(bill, today)
            if updated != bill:
                collection.put(updated)
                changed.append(updated)
        return changed

    def verify_payment(
        self, collection: BillCollection, classified: ClassifiedMessage
    ) -> PaymentVerification | None:
        """Summary: Mark a bill paid when a matching confirmation arrives.

        Importance: Clears alerts automatically after the user pays.
        Alternatives: Require manual confirmation for every bill.
        """

        if classified.category not in VERIFICATION_CATEGORIES:
            return None
        message = classified.message
        confirmation = detect_payment_confirmation(message)
        if confirmation is None:
            return None
        sender = normalize_provider(f"{message.sender.name} {message.sender.address}")
        sent_on = message.timestamp.date()
        window = timedelta(days=self.settings.payment_window_days)
        candidates = [
            bill
            for bill in collection.snapshot()
            if bill.is_active
            and normalize_provider(bill.provider) in sender
            and bill.created_at <= message.timestamp
            and sent_on <= bill.due_date + window
            and (confirmation.amount is None or confirmation.amount == bill.amount)
        ]
        if not candidates:
            logger.debug("Confirmation %s matched no open bill.", message.message_id)
            return None
        text = f"{message.subject} {message.content}"
        by_account = [
            bill for bill in candidates if bill.account_number and bill.account_number in text
        ]
        chosen = min(by_account or candidates, key=lambda bill: (bill.due_date, bill.bill_id))
        paid = replace(
            chosen,
            status=STATUS_PAID,
            paid_at=message.timestamp,
            payment_message_id=message.message_id,
            last_updated=max(chosen.last_updated, message.timestamp),
        )
        collection.put(paid)
        logger.info("Bill %s paid per message %s.", chosen.bill_id, message.message_id)
        return PaymentVerification(
            bill_id=chosen.bill_id,
            message_id=message.message_id,
            verified_at=message.timestamp,
            amount=confirmation.amount,
            method=confirmation.method,
            confirmation_number=confirmation.confirmation_number,
        )

    def dismiss(self, collection: BillCollection, bill_id: str) -> Bill:
        """Summary: Dismiss a bill for its current cycle.

        Importance: The decision is remembered so duplicate notices cannot revive it.
        Alternatives: Delete the bill outright.
        """

        bill = collection.get(bill_id)
        if bill is None:
            raise ValueError(f"Bill not found: {bill_id}")
        collection.dismissed_cycles.add((bill.bill_id, bill.due_date))
        dismissed = replace(bill, status=STATUS_DISMISSED, dismissed_by=DISMISSED_BY_USER)
        collection.put(dismissed)
        return dismissed

    def active_alerts(self, collection: BillCollection) -> list[Bill]:
        """Summary: Return open bills ordered by urgency.

        Importance: Feeds the alert list and notifications.
        Alternatives: Return bills in storage order.
        """

        active = [bill for bill in collection.snapshot() if bill.is_active]
        return sorted(
            active,
            key=lambda bill: (PRIORITY_ORDER.index(bill.priority), bill.due_date, bill.bill_id),
        )

    def summary(self, collection: BillCollection) -> BillAlertSummary:
        today = self.today()
        active = self.active_alerts(collection)
        return BillAlertSummary(
            total=len(active),
            overdue=sum(1 for bill in active if bill.status == STATUS_OVERDUE),
            critical=sum(1 for bill in active if bill.priority == "critical"),
            due_this_week=sum(
                1 for bill in active if 0 <= days_until_due(bill.due_date, today) <= 7
            ),
            total_amount=sum((bill.amount for bill in active), Decimal("0.00")),
        )

    def _derive(self, bill: Bill, today: date) -> Bill:
        if bill.status in TERMINAL_STATUSES:
            return bill
        days_left = days_until_due(bill.due_date, today)
        if days_left < 0:
            status = STATUS_OVERDUE
        elif days_left <= self.settings.due_soon_days:
            status = STATUS_DUE_SOON
        else:
            status = STATUS_PENDING
        if _STATUS_RANK[bill.status] > _STATUS_RANK[status]:
            status = bill.status
        priority = assess_priority(bill.amount, bill.category, status, days_left, self.settings)
        if status == bill.status and priority == bill.priority:
            return bill
        return replace(bill, status=status, priority=priority)


def _with_source(source_ids: tuple[str, ...], message_id: str) -> tuple[str, ...]:
    return tuple(sorted(set(source_ids) | {message_id}))
