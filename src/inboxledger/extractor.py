"""Summary: Bill fact extraction from classified messages.

Importance: Turns billing notices into normalized candidate bills without creating partial records.
Alternatives: Ask an LLM to extract bill fields from every message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from urllib.parse import urlparse

from inboxledger.models import (
    IMPORTANT,
    REGULAR,
    SUBSCRIPTION,
    BillFact,
    ClassifiedMessage,
    Message,
    PaymentConfirmation,
    Sender,
)

logger = logging.getLogger(__name__)

ELIGIBLE_CATEGORIES = frozenset({SUBSCRIPTION, IMPORTANT, REGULAR})

BILL_SIGNALS = (
    "bill",
    "invoice",
    "statement",
    "amount due",
    "payment due",
    "balance due",
    "total due",
    "minimum payment",
    "please pay",
    "payment required",
    "due date",
)

CONFIRMATION_PHRASES = (
    "payment received",
    "payment confirmed",
    "payment successful",
    "thank you for your payment",
    "payment has been received",
    "we received your payment",
    "payment processed",
    "payment confirmation",
)
# Only counts in the subject; bill notices often promise a receipt in the body.
SUBJECT_CONFIRMATION_WORDS = ("receipt",)

PAYMENT_METHODS = (
    (("credit card", "visa", "mastercard", "amex"), "Credit Card"),
    (("debit card",), "Debit Card"),
    (("bank account", "checking", "ach"), "Bank Transfer"),
    (("paypal",), "PayPal"),
    (("venmo",), "Venmo"),
    (("apple pay",), "Apple Pay"),
)

BILL_CATEGORY_TERMS = (
    ("utility", ("electric", "electricity", "water", "gas", "utility", "power")),
    ("rent", ("rent", "lease", "landlord")),
    ("subscription", ("netflix", "spotify", "subscription", "membership")),
    ("credit-card", ("credit card", "visa", "mastercard", "amex")),
    ("insurance", ("insurance", "premium", "policy")),
    ("loan", ("loan", "mortgage", "financing")),
)

GENERIC_SENDER_WORDS = frozenset(
    {
        "account",
        "accounts",
        "alerts",
        "billing",
        "bills",
        "customer",
        "care",
        "ebill",
        "info",
        "no-reply",
        "noreply",
        "notification",
        "notifications",
        "payments",
        "service",
        "services",
        "statements",
        "support",
        "team",
    }
)

CURRENCY_CODES = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "₱": "PHP",
    "¥": "JPY",
}

_AMOUNT_RE = re.compile(
    r"(?P<symbol>[$€£₱¥]|\b(?:USD|EUR|GBP|PHP|CAD|AUD)\b)\s?(?P<number>\d[\d.,]*)"
    r"|(?P<trailing>\d[\d.,]*)\s?(?P<code>USD|EUR|GBP|PHP|CAD|AUD)\b",
    re.IGNORECASE,
)
_AMOUNT_CONTEXT_RE = re.compile(
    r"(amount due|total due|balance due|minimum payment|total amount|amount|balance|total)"
    r"[^\n$€£₱¥\d]{0,20}$",
    re.IGNORECASE,
)

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)
_DATE = (
    rf"(?:\d{{4}}-\d{{1,2}}-\d{{1,2}}"
    rf"|\d{{1,2}}/\d{{1,2}}/\d{{2,4}}"
    rf"|{_MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?"
    rf"|\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTH}(?:,?\s+\d{{4}})?)"
)
_DUE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rf"\bdue(?:\s+date)?(?:\s+(?:by|on))?\s*(?:is|:)?\s*(?P<date>{_DATE})",
        rf"\bpay\s+(?:by|before)\s*:?\s*(?P<date>{_DATE})",
        rf"\bbefore\s+(?P<date>{_DATE})",
    )
)
_FULL_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
)
_YEARLESS_FORMATS = ("%B %d %Y", "%b %d %Y", "%d %B %Y", "%d %b %Y")

_ACCOUNT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"account\s+ending\s+(?:in|with)\s*:?\s*[x*•\-\s]*(\d{4})",
        r"\b(?:account|acct)\.?\s*(?:number|no\.?|#)?\s*:?\s*([\dx*•\-]{4,})",
        r"[x*•]{4,}[\s-]?(\d{4})",
    )
)
_CONFIRMATION_NUMBER_RE = re.compile(
    r"confirmation\s+(?:number|no\.?|#|code)?\s*:?\s*([A-Z0-9][A-Z0-9-]{3,})", re.IGNORECASE
)
_ANCHOR_RE = re.compile(
    r"<a\s[^>]*href=[\"'](?P<url>https?://[^\"']+)[\"'][^>]*>(?P<text>.*?)</a>",
    re.IGNORECASE | re.DOTALL,
)
_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
_PAY_HINTS = ("pay", "payment", "billing")


@dataclass(frozen=True)
class BillExtractor:
    """Summary: Pattern-based extractor for bill facts.

    Importance: Produces one candidate bill per qualifying message, or nothing.
    Alternatives: Build bills from AI output.
    """

    eligible_categories: frozenset[str] = ELIGIBLE_CATEGORIES

    def extract(self, classified: ClassifiedMessage) -> BillFact | None:
        """Summary: Extract a bill fact from a classified message.

        Importance: Messages without both an amount and a due date never become bills.
        Alternatives: Default missing due dates to a fixed offset.
        """

        if classified.category not in self.eligible_categories:
            return None
        message = classified.message
        text = f"{message.subject}\n{message.content}"
        lowered = text.lower()
        if not any(signal in lowered for signal in BILL_SIGNALS):
            return None
        if detect_payment_confirmation(message) is not None:
            return None
        amount = find_amount(text)
        if amount is None:
            logger.debug("Message %s has a billing signal but no amount.", message.message_id)
            return None
        due_date = find_due_date(text, message.timestamp.date())
        if due_date is None:
            logger.debug("Message %s has a billing signal but no due date.", message.message_id)
            return None
        provider = extract_provider(message.sender, message.subject)
        return BillFact(
            provider=provider,
            account_suffix=find_account_suffix(text),
            amount=amount[0],
            currency=amount[1],
            due_date=due_date,
            bill_name=extract_bill_name(message.subject),
            bill_category=categorize_bill(message),
            payment_link=find_payment_link(message.content, provider),
            message_id=message.message_id,
            received_at=message.timestamp,
        )


def detect_payment_confirmation(message: Message) -> PaymentConfirmation | None:
    """Summary: Detect a payment confirmation and read its details.

    Importance: Confirmations move bills to paid and are never bills themselves.
    Alternatives: Require a user to mark bills paid manually.
    """

    if not is_payment_confirmation(message):
        return None
    text = f"{message.subject}\n{message.content}"
    lowered = text.lower()
    amount = find_amount(text)
    number_match = _CONFIRMATION_NUMBER_RE.search(text)
    return PaymentConfirmation(
        amount=amount[0] if amount else None,
        method=extract_payment_method(lowered),
        confirmation_number=number_match.group(1).upper() if number_match else None,
    )


def is_payment_confirmation(message: Message) -> bool:
    lowered = f"{message.subject}\n{message.content}".lower()
    if any(_has_phrase(lowered, phrase) for phrase in CONFIRMATION_PHRASES):
        return True
    subject = message.subject.lower()
    return any(_has_phrase(subject, word) for word in SUBJECT_CONFIRMATION_WORDS)


def _has_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None


def find_amount(text: str) -> tuple[Decimal, str] | None:
    """Summary: Find the most relevant currency amount in text.

    Importance: Prefers amounts labelled as due or total over incidental figures.
    Alternatives: Always take the first amount.
    """

    candidates: list[tuple[bool, Decimal, str]] = []
    for match in _AMOUNT_RE.finditer(text):
        raw = match.group("number") or match.group("trailing")
        symbol = match.group("symbol") or match.group("code") or "$"
        value = parse_amount(raw)
        if value is None or value <= 0:
            continue
        currency = CURRENCY_CODES.get(symbol, symbol.upper())
        labelled = _AMOUNT_CONTEXT_RE.search(text[max(0, match.start() - 40) : match.start()])
        candidates.append((labelled is not None, value, currency))
    if not candidates:
        return None
    for labelled, value, currency in candidates:
        if labelled:
            return value, currency
    return candidates[0][1], candidates[0][2]


def parse_amount(raw: str) -> Decimal | None:
    """Summary: Parse a number with ambiguous separators to two decimals.

    Importance: Handles 1,234.56, 1.234,56, and 128,50 without locale settings.
    Alternatives: Assume US formatting everywhere.
    """

    cleaned = raw.strip().rstrip(".,")
    if not cleaned or not re.fullmatch(r"[\d.,]+", cleaned):
        return None
    commas = cleaned.count(",")
    dots = cleaned.count(".")
    if commas and dots:
        if cleaned.rfind(",") > cleaned.rfind("."):
            normalized = cleaned.replace(".", "").replace(",", ".")
        elif re.fullmatch(r"\d{1,3}(?:,\d{3})+\.\d+", cleaned):
            normalized = cleaned.replace(",", "")
        else:
            return None
    elif commas > 1:
        normalized = cleaned.replace(",", "")
    elif commas == 1:
        normalized = cleaned.replace(",", ".")
    elif dots > 1:
        normalized = cleaned.replace(".", "")
    else:
        normalized = cleaned
    try:
        return Decimal(normalized).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return None


def find_due_date(text: str, reference: date) -> date | None:
    """Summary: Find a due date phrase and parse it.

    Importance: The due date anchors status, priority, and billing cycles.
    Alternatives: Use the message date plus a default term.
    """

    for pattern in _DUE_PATTERNS:
        for match in pattern.finditer(text):
            parsed = parse_date(match.group("date"), reference)
            if parsed is not None:
                return parsed
    return None


def parse_date(raw: str, reference: date) -> date | None:
    """Summary: Parse ISO, US numeric, and month-name dates.

    Importance: A date without a year takes the year of the message.
    Alternatives: Use a general-purpose date parsing library.
    """

    cleaned = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", raw.strip().lower())
    cleaned = cleaned.replace(".", " ").replace(",", " ")
    cleaned = re.sub(r"\bsept\b", "sep", cleaned)
    cleaned = " ".join(cleaned.split())
    for date_format in _FULL_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, date_format).date()
        except ValueError:
            continue
    for date_format in _YEARLESS_FORMATS:
        try:
            parsed = datetime.strptime(f"{cleaned} {reference.year}", date_format).date()
        except ValueError:
            continue
        if parsed < reference - timedelta(days=60):
            parsed = parsed.replace(year=parsed.year + 1)
        return parsed
    return None


def find_account_suffix(text: str) -> str | None:
    """Summary: Return the last four digits of an account number.

    Importance: Only the suffix is retained and it forms half of the merge key.
    Alternatives: Store full account numbers.
    """

    for pattern in _ACCOUNT_PATTERNS:
        for match in pattern.finditer(text):
            digits = re.sub(r"\D", "", match.group(1))
            if len(digits) >= 4:
                return digits[-4:]
    return None


def extract_provider(sender: Sender, subject: str = "") -> str:
    """Summary: Derive a provider name from the sender.

    Importance: Provider names key bills and match payment confirmations.
    Alternatives: Keep a curated list of known billers.
    """

    tokens = sender.name.strip().strip("\"'").split()
    while tokens and tokens[-1].lower().strip(",") in GENERIC_SENDER_WORDS:
        tokens.pop()
    if tokens and "@" not in tokens[0]:
        return " ".join(tokens)
    labels = [label for label in sender.domain.split(".") if label]
    if len(labels) >= 3 and labels[-2] in {"co", "com", "org", "net", "gov"} and len(labels[-1]) == 2:
        label = labels[-3]
    elif len(labels) >= 2:
        label = labels[-2]
    else:
        label = ""
    if label:
        return label[:1].upper() + label[1:]
    match = re.match(r"^([A-Z][a-zA-Z\s]+)", subject)
    if match:
        return match.group(1).strip()
    return "Unknown Provider"


def extract_bill_name(subject: str) -> str:
    """Summary: Derive a display name from the subject line.

    Importance: Gives alerts a readable title.
    Alternatives: Use the provider name only.
    """

    name = re.sub(r"^(?:(?:re|fwd?|fw)\s*:\s*)+", "", subject.strip(), flags=re.IGNORECASE)
    name = re.sub(
        r"^(?:your|statement|bill|invoice|payment)[\s:]+", "", name, flags=re.IGNORECASE
    ).strip()
    if not name:
        return "Bill Payment"
    return name[:1].upper() + name[1:]


def categorize_bill(message: Message) -> str:
    """Summary: Assign a bill category from sender and content keywords.

    Importance: Category contributes to priority and dashboard grouping.
    Alternatives: Ask the user to categorize each bill.
    """

    text = " ".join(
        [message.sender.name, message.sender.address, message.subject, message.content]
    ).lower()
    for category, terms in BILL_CATEGORY_TERMS:
        if any(re.search(rf"\b{re.escape(term)}\b", text) for term in terms):
            return category
    return "other"


def find_payment_link(body: str, provider: str) -> str | None:
    """Summary: Pick the outbound link most likely to pay the bill.

    Importance: Lets the UI offer a one-click pay action.
    Alternatives: Return every link and let the user choose.
    """

    links: list[tuple[int, str, str]] = []
    anchored: set[str] = set()
    for match in _ANCHOR_RE.finditer(body):
        url = match.group("url").rstrip(".,;")
        anchored.add(url)
        text = re.sub(r"<[^>]+>", "", match.group("text")).strip().lower()
        links.append((match.start(), url, text))
    for match in _URL_RE.finditer(body):
        url = match.group(0).rstrip(".,;")
        if url not in anchored:
            links.append((match.start(), url, ""))
    links.sort(key=lambda item: item[0])
    token = normalize_provider(provider)
    for _, url, anchor in links:
        host = (urlparse(url).hostname or "").replace("-", "").replace(".", "")
        if token and (token in host or token in normalize_provider(anchor)):
            return url
        if any(hint in anchor for hint in _PAY_HINTS):
            return url
    for _, url, _ in links:
        if any(hint in url.lower() for hint in _PAY_HINTS):
            return url
    return None


def extract_payment_method(lowered: str) -> str:
    for terms, method in PAYMENT_METHODS:
        if any(re.search(rf"\b{re.escape(term)}\b", lowered) for term in terms):
            return method
    return "Unknown"


def normalize_provider(provider: str) -> str:
    """Summary: Reduce a provider name to lowercase alphanumerics.

    Importance: Makes merge keys and sender matching insensitive to punctuation.
    Alternatives: Compare raw display names.
    """

    return re.sub(r"[^a-z0-9]", "", provider.lower())
