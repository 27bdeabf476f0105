"""Summary: Tests for bill fact extraction and payment confirmation parsing.

Importance: Extraction errors create phantom bills or miss real ones.
Alternatives: Extract bill fields with an LLM.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Callable

from inboxledger.extractor import (
    BillExtractor,
    detect_payment_confirmation,
    extract_bill_name,
    extract_provider,
    find_account_suffix,
    find_amount,
    find_due_date,
    find_payment_link,
    parse_amount,
    parse_date,
)
from inboxledger.models import ClassifiedMessage, Message, Sender

POWERCO_BODY = (
    "Your electricity statement is ready. Account ending in 4821. "
    "Amount due: $128.50. Payment due: 2025-03-10. "
    "Pay online at https://pay.powerco.com/bill."
)


def _classified(message: Message, category: str = "subscription") -> ClassifiedMessage:
    return ClassifiedMessage(
        message=message,
        category=category,
        confidence_source="rule",
        score=6,
        rule_set_version="test",
    )


def test_parse_amount_handles_separator_styles() -> None:
    """Summary: Verify US, European, and comma-decimal amounts parse to two decimals.

    Importance: Bills arrive from providers in many locales.
    Alternatives: Assume one locale.
    """

    assert parse_amount("128.50") == Decimal("128.50")
    assert parse_amount("1,234.56") == Decimal("1234.56")
    assert parse_amount("1.234,56") == Decimal("1234.56")
    assert parse_amount("128,50") == Decimal("128.50")
    assert parse_amount("1.234.567") == Decimal("1234567.00")
    assert parse_amount("42") == Decimal("42.00")
    assert parse_amount("12,34.5") is None


def test_find_amount_prefers_labelled_amounts() -> None:
    """Summary: Ensure an amount labelled as due wins over earlier figures.

    Importance: Notices often mention past payments before the new balance.
    Alternatives: Always take the first amount.
    """

    text = "Last month you paid 12 USD. Total due: €45,00 by the end of the month."
    assert find_amount(text) == (Decimal("45.00"), "EUR")
    assert find_amount("Thanks for being a customer since 2019.") is None
    assert find_amount("A fee of £7.5 applies.") == (Decimal("7.50"), "GBP")


def test_parse_date_formats() -> None:
    """Summary: Verify ISO, US numeric, month-name, and year-less dates.

    Importance: Due dates anchor status and cycles.
    Alternatives: Use a general date parsing library.
    """

    reference = date(2025, 2, 24)
    assert parse_date("2025-03-10", reference) == date(2025, 3, 10)
    assert parse_date("03/01/2025", reference) == date(2025, 3, 1)
    assert parse_date("March 10th, 2025", reference) == date(2025, 3, 10)
    assert parse_date("15 Mar 2025", reference) == date(2025, 3, 15)
    assert parse_date("Sept. 3", date(2025, 8, 1)) == date(2025, 9, 3)
    assert parse_date("not a date", reference) is None


def test_yearless_dates_roll_into_next_year() -> None:
    """Summary: Ensure a year-less date well before the message rolls forward.

    Importance: December notices for January bills must not look overdue.
    Alternatives: Always use the message year.
    """

    assert parse_date("Jan 5", date(2024, 12, 20)) == date(2025, 1, 5)
    assert parse_date("Dec 1", date(2024, 12, 20)) == date(2024, 12, 1)


def test_find_due_date_phrases() -> None:
    """Summary: Verify due, pay by, and before phrasing is recognized.

    Importance: Providers word due dates differently.
    Alternatives: Require a fixed label.
    """

    reference = date(2025, 3, 1)
    assert find_due_date("Amount due: $20. Payment due: 2025-03-10", reference) == date(2025, 3, 10)
    assert find_due_date("Please pay by March 15", reference) == date(2025, 3, 15)
    assert find_due_date("Settle this before 04/02/2025.", reference) == date(2025, 4, 2)
    assert find_due_date("Your balance is $20.", reference) is None


def test_account_suffix_keeps_last_four_digits() -> None:
    """Summary: Ensure only the last four digits of account numbers are retained.

    Importance: Full account numbers are sensitive and unnecessary.
    Alternatives: Store the full account number.
    """

    assert find_account_suffix("Account ending in 4821") == "4821"
    assert find_account_suffix("Acct #: 1234-5678-9012") == "9012"
    assert find_account_suffix("Card ****7733 was charged") == "7733"
    assert find_account_suffix("No account details here") is None


def test_extract_provider_variants() -> None:
    """Summary: Verify provider names come from display names, domains, or subjects.

    Importance: Provider names key bills and match confirmations.
    Alternatives: Maintain a curated provider list.
    """

    assert extract_provider(Sender("PowerCo Billing", "billing@powerco.com")) == "PowerCo"
    assert extract_provider(Sender("Acme Customer Service", "x@acme.io")) == "Acme"
    assert extract_provider(Sender("", "noreply@mail.citywater.co.uk")) == "Citywater"
    assert extract_provider(Sender("", "ebill"), "Landlord Rent notice") == "Landlord Rent notice"
    assert extract_provider(Sender("", ""), "") == "Unknown Provider"


def test_payment_link_prefers_provider_or_pay_anchor() -> None:
    """Summary: Ensure the provider's payment link wins over unrelated links.

    Importance: One-click pay should never open an unsubscribe page.
    Alternatives: Return the first link in the message.
    """

    body = (
        '<a href="https://example.com/unsubscribe">Unsubscribe</a> '
        '<a href="https://www.netflix.com/account/billing">Update billing</a>'
    )
    assert find_payment_link(body, "Netflix") == "https://www.netflix.com/account/billing"
    bare = "Read more https://news.example.com/read or visit https://portal.example.com/pay/123."
    assert find_payment_link(bare, "Acme") == "https://portal.example.com/pay/123"
    assert find_payment_link("No links here.", "Acme") is None


def test_extract_full_bill(make_message: Callable[..., Message]) -> None:
    """Summary: Verify a complete notice yields every bill field.

    Importance: Covers the common utility bill path end to end.
    Alternatives: Test each helper only.
    """

    message = make_message(
        "m-1",
        "Your PowerCo bill is ready",
        body=POWERCO_BODY,
        sender_name="PowerCo Billing",
        sender_address="billing@powerco.com",
    )
    fact = BillExtractor().extract(_classified(message))
    assert fact is not None
    assert fact.provider == "PowerCo"
    assert fact.account_suffix == "4821"
    assert fact.amount == Decimal("128.50")
    assert fact.currency == "USD"
    assert fact.due_date == date(2025, 3, 10)
    assert fact.bill_name == "PowerCo bill is ready"
    assert fact.bill_category == "utility"
    assert fact.payment_link == "https://pay.powerco.com/bill"
    assert fact.message_id == "m-1"


def test_no_partial_bills(make_message: Callable[..., Message]) -> None:
    """Summary: Ensure notices missing an amount or a due date produce nothing.

    Importance: Partial bills would raise alerts that cannot be acted on.
    Alternatives: Default the due date to thirty days out.
    """

    extractor = BillExtractor()
    no_due = make_message("m-2", "Invoice 2291", body="Your invoice total is $42.00.")
    no_amount = make_message("m-3", "Statement ready", body="Payment due: 2025-03-10.")
    assert extractor.extract(_classified(no_due)) is None
    assert extractor.extract(_classified(no_amount)) is None


def test_ineligible_categories_are_skipped(make_message: Callable[..., Message]) -> None:
    """Summary: Verify work and personal mail never yields bills.

    Importance: Expense discussions are not bills.
    Alternatives: Extract from every category.
    """

    message = make_message("m-4", "Your PowerCo bill is ready", body=POWERCO_BODY)
    assert BillExtractor().extract(_classified(message, "work")) is None
    assert BillExtractor().extract(_classified(message, "regular")) is not None


def test_confirmation_is_not_a_bill(make_message: Callable[..., Message]) -> None:
    """Summary: Ensure payment confirmations are read as payments, not bills.

    Importance: A receipt must never create a new alert.
    Alternatives: Let the tracker discard confirmations later.
    """

    message = make_message(
        "m-5",
        "Payment received - thank you!",
        body=(
            "We received your payment of $128.50 for your bill due 2025-03-10 "
            "by credit card. Confirmation number: PC-99812."
        ),
        sender_address="noreply@powerco.com",
    )
    assert BillExtractor().extract(_classified(message)) is None
    confirmation = detect_payment_confirmation(message)
    assert confirmation is not None
    assert confirmation.amount == Decimal("128.50")
    assert confirmation.method == "Credit Card"
    assert confirmation.confirmation_number == "PC-99812"


def test_receipt_mention_in_body_still_a_bill(make_message: Callable[..., Message]) -> None:
    """Summary: Ensure a bill that promises a receipt is still extracted.

    Importance: Receipts only signal a payment when named in the subject.
    Alternatives: Treat any mention of a receipt as a confirmation.
    """

    notice = make_message(
        "m-6",
        "Your PowerCo bill",
        body=(
            "Account ending in 4821. Amount due: $128.50. Payment due: 2025-03-10. "
            "A receipt will be emailed once you pay."
        ),
        sender_address="billing@powerco.com",
    )
    assert detect_payment_confirmation(notice) is None
    fact = BillExtractor().extract(_classified(notice))
    assert fact is not None
    assert fact.amount == Decimal("128.50")

    receipt = make_message(
        "m-7",
        "Your PowerCo receipt",
        body="Paid $128.50 for your bill due 2025-03-10.",
        sender_address="billing@powerco.com",
    )
    assert detect_payment_confirmation(receipt) is not None
    assert BillExtractor().extract(_classified(receipt)) is None


def test_bill_name_strips_prefixes() -> None:
    """Summary: Verify reply prefixes and generic words are stripped from titles.

    Importance: Keeps alert titles readable.
    Alternatives: Show raw subjects.
    """

    assert extract_bill_name("Re: Fwd: Your statement is ready") == "Statement is ready"
    assert extract_bill_name("Invoice: ") == "Bill Payment"
