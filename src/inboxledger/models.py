"""Summary: Domain model dataclasses for InboxLedger.

Importance: Defines the core entities shared across classification, bill tracking, and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

EMERGENCY = "emergency"
IMPORTANT = "important"
WORK = "work"
PERSONAL = "personal"
SUBSCRIPTION = "subscription"
REGULAR = "regular"

# Tie-break order, strongest first.
CATEGORY_ORDER = (EMERGENCY, IMPORTANT, SUBSCRIPTION, WORK, PERSONAL, REGULAR)
CATEGORIES = frozenset(CATEGORY_ORDER)

SOURCE_RULE = "rule"
SOURCE_AI = "ai"
SOURCE_RULE_FALLBACK = "rule-fallback"

STATUS_PENDING = "pending"
STATUS_DUE_SOON = "due-soon"
STATUS_OVERDUE = "overdue"
STATUS_PAID = "paid"
STATUS_DISMISSED = "dismissed"
ACTIVE_STATUSES = frozenset({STATUS_PENDING, STATUS_DUE_SOON, STATUS_OVERDUE})
TERMINAL_STATUSES = frozenset({STATUS_PAID, STATUS_DISMISSED})

PRIORITY_ORDER = ("critical", "high", "medium", "low")

BILL_CATEGORIES = (
    "utility",
    "rent",
    "subscription",
    "credit-card",
    "insurance",
    "loan",
    "other",
)


@dataclass(frozen=True)
class Sender:
    """Summary: Represents the sender of a message.

    Importance: Sender name and domain drive rule matching and provider detection.
    Alternatives: Keep the raw From header and parse it on every use.
    """

    name: str
    address: str

    @property
    def domain(self) -> str:
        """Summary: Return the lowercased domain part of the address.

        Importance: Supports sender-domain rules and provider fallbacks.
        Alternatives: Store the domain as a separate field.
        """

        _, _, domain = self.address.lower().rpartition("@")
        return domain


@dataclass(frozen=True)
class Message:
    """Summary: Represents an email message with metadata and content.

    Importance: Core unit for classification and bill extraction; never mutated once ingested.
    Alternatives: Model only threads and store messages as embedded records.
    """

    message_id: str
    subject: str
    sender: Sender
    recipients: tuple[str, ...]
    timestamp: datetime
    snippet: str
    body: str
    read: bool = False

    @property
    def content(self) -> str:
        """Summary: Return the body, or the snippet when no body was captured.

        Importance: Keeps downstream text handling uniform across providers.
        Alternatives: Require every provider to supply a full body.
        """

        return self.body or self.snippet


@dataclass(frozen=True)
class ClassifiedMessage:
    """Summary: A message paired with its derived category.

    Importance: Feeds bill extraction, search, and the UI category views.
    Alternatives: Store the category directly on the message record.
    """

    message: Message
    category: str
    confidence_source: str
    score: int
    rule_set_version: str
    matched_rules: tuple[str, ...] = ()

    @property
    def message_id(self) -> str:
        return self.message.message_id


@dataclass(frozen=True)
class BillFact:
    """Summary: Candidate bill details extracted from one message.

    Importance: Normalizes extraction output before it is merged into long-lived bills.
    Alternatives: Create bills directly from messages without an intermediate record.
    """

    provider: str
    account_suffix: str | None
    amount: Decimal
    currency: str
    due_date: date
    bill_name: str
    bill_category: str
    payment_link: str | None
    message_id: str
    received_at: datetime


@dataclass(frozen=True)
class Bill:
    """Summary: A tracked payment obligation derived from one or more notices.

    Importance: The unit of alerting; stable across re-extraction and keyed by provider and account.
    Alternatives: Create one alert per notice and deduplicate in the UI.
    """

    bill_id: str
    merge_key: str
    bill_name: str
    provider: str
    account_number: str | None
    amount: Decimal
    currency: str
    due_date: date
    category: str
    priority: str
    status: str
    payment_link: str | None
    source_message_ids: tuple[str, ...]
    created_at: datetime
    last_updated: datetime
    last_notice_at: datetime
    last_notice_id: str
    cycle: int = 1
    low_confidence_key: bool = False
    paid_at: datetime | None = None
    payment_message_id: str | None = None
    dismissed_by: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(frozen=True)
class PaymentConfirmation:
    """Summary: Payment details read from a confirmation message.

    Importance: Lets the tracker match confirmations to outstanding bills.
    Alternatives: Match on keywords only and ignore amounts.
    """

    amount: Decimal | None
    method: str
    confirmation_number: str | None


@dataclass(frozen=True)
class PaymentVerification:
    """Summary: Records that a message confirmed payment of a bill.

    Importance: Provides an audit trail for automatic paid transitions.
    Alternatives: Only flip the bill status without keeping evidence.
    """

    bill_id: str
    message_id: str
    verified_at: datetime
    amount: Decimal | None
    method: str
    confirmation_number: str | None = None


@dataclass(frozen=True)
class BillAlertSummary:
    """Summary: Aggregate counts over active bills.

    Importance: Powers dashboard badges without storing derived totals.
    Alternatives: Maintain counters incrementally on each merge.
    """

    total: int
    overdue: int
    critical: int
    due_this_week: int
    total_amount: Decimal


@dataclass(frozen=True)
class AiVerdict:
    """Summary: Normalized AI classification answer.

    Importance: Decouples the classifier from provider response shapes.
    Alternatives: Pass raw provider payloads into the classifier.
    """

    category: str
    confidence: float = 0.0


@dataclass(frozen=True)
class AiCompletion:
    """Summary: Provider-neutral AI completion.

    Importance: Every provider response is reduced to one shape before entering the core.
    Alternatives: Return provider-specific response objects directly.
    """

    content: str
    tokens: int
    provider: str
    model: str
    latency_ms: int = 0


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: datetime


@dataclass(frozen=True)
class AiResponse:
    """Summary: Records an AI response paired to a request.

    Importance: Enables audit trails and tuning of fallback classification.
    Alternatives: Store only final categories on the message records.
    """

    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


@dataclass(frozen=True)
class BatchResult:
    """Summary: Outcome of processing one batch of messages.

    Importance: Tells callers what changed without re-reading the whole store.
    Alternatives: Return only counts.
    """

    classified: list[ClassifiedMessage] = field(default_factory=list)
    bills: list[Bill] = field(default_factory=list)
    verifications: list[PaymentVerification] = field(default_factory=list)
