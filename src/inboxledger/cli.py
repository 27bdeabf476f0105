"""Summary: Command-line interface for InboxLedger.

Importance: Provides a local-first entry point for ingestion, processing, and bill review.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime
from pathlib import Path

from inboxledger.app import build_services
from inboxledger.config import AppConfig
from inboxledger.email import EmlEmailProvider, MockEmailProvider
from inboxledger.models import CATEGORY_ORDER, Bill
from inboxledger.rules import RuleSetError
from inboxledger.tracker import days_until_due, format_amount


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="InboxLedger CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_mock = subparsers.add_parser("ingest-mock", help="Ingest mock emails")
    ingest_mock.add_argument("--limit", type=int, default=50)
    ingest_mock.add_argument(
        "--fixture", type=str, default=str(Path("data") / "mock_messages.json")
    )

    ingest_eml = subparsers.add_parser("ingest-eml", help="Ingest emails from .eml files")
    ingest_eml.add_argument("paths", nargs="+", type=str)
    ingest_eml.add_argument("--limit", type=int, default=25)

    subparsers.add_parser("process", help="Classify pending messages and update bills")
    subparsers.add_parser("reclassify", help="Rebuild classifications and bills from history")

    list_messages = subparsers.add_parser("list-messages", help="List classified messages")
    list_messages.add_argument("--category", choices=CATEGORY_ORDER, default=None)
    list_messages.add_argument("--limit", type=int, default=10)

    bills = subparsers.add_parser("bills", help="List bill alerts")
    bills.add_argument("--all", action="store_true", help="Include paid and dismissed bills")

    subparsers.add_parser("bill-summary", help="Show bill alert totals")

    dismiss = subparsers.add_parser("dismiss-bill", help="Dismiss a bill alert")
    dismiss.add_argument("bill_id", type=str)

    search = subparsers.add_parser("search", help="Search classified messages")
    search.add_argument("query", type=str)
    search.add_argument("--category", choices=CATEGORY_ORDER, default=None)
    search.add_argument("--unread", action="store_true")
    search.add_argument("--limit", type=int, default=10)

    subparsers.add_parser("stats", help="Show inbox statistics")
    subparsers.add_parser("show-rules", help="Show the active rule set")

    add_keyword = subparsers.add_parser("add-keyword", help="Add a keyword to a category")
    add_keyword.add_argument("category", choices=CATEGORY_ORDER)
    add_keyword.add_argument("keyword", type=str)

    remove_keyword = subparsers.add_parser("remove-keyword", help="Remove a category keyword")
    remove_keyword.add_argument("category", choices=CATEGORY_ORDER)
    remove_keyword.add_argument("keyword", type=str)

    add_domain = subparsers.add_parser("add-sender-domain", help="Add a sender domain to a category")
    add_domain.add_argument("category", choices=CATEGORY_ORDER)
    add_domain.add_argument("domain", type=str)

    ai_requests = subparsers.add_parser("ai-requests", help="List AI fallback requests")
    ai_requests.add_argument("--limit", type=int, default=10)

    subparsers.add_parser("serve", help="Run the HTTP API")
    return parser


def format_bill(bill: Bill, today: datetime) -> str:
    days = days_until_due(bill.due_date, today.date())
    flag = " (provider-only match)" if bill.low_confidence_key else ""
    return (
        f"{bill.bill_id} [{bill.priority}/{bill.status}] {bill.provider}: "
        f"{format_amount(bill.amount, bill.currency)} due {bill.due_date.isoformat()} "
        f"({days} days){flag}"
    )


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives the user experience without a UI.
    Alternatives: Invoke services via an HTTP API.
    """

    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        _dispatch(args, config)
    except RuleSetError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc


def _dispatch(args: argparse.Namespace, config: AppConfig) -> None:
    if args.command == "serve":
        import uvicorn

        from inboxledger.api import create_app

        uvicorn.run(create_app(config), host=config.api_host, port=config.api_port)
        return

    services = build_services(config)

    if args.command == "ingest-mock":
        provider = MockEmailProvider(Path(args.fixture))
        inserted = services.ingestion.ingest_messages(provider.fetch_recent(args.limit))
        print(f"Ingested {inserted} messages from mock fixture.")
        return

    if args.command == "ingest-eml":
        provider = EmlEmailProvider([Path(path) for path in args.paths])
        inserted = services.ingestion.ingest_messages(provider.fetch_recent(args.limit))
        print(f"Ingested {inserted} messages from .eml files.")
        return

    if args.command == "process":
        result = asyncio.run(services.pipeline.process_pending())
        print(
            f"Classified {len(result.classified)} messages, updated {len(result.bills)} bills, "
            f"verified {len(result.verifications)} payments."
        )
        return

    if args.command == "reclassify":
        count = asyncio.run(services.pipeline.reclassify_all())
        print(f"Reclassified {count} messages under rules {services.pipeline.rule_set.version}.")
        return

    if args.command == "list-messages":
        for item in services.search.list_messages(category=args.category, limit=args.limit):
            sender = item.message.sender.name or item.message.sender.address
            print(
                f"{item.message_id}: [{item.category}/{item.confidence_source}] "
                f"{item.message.subject} ({sender})"
            )
        return

    if args.command == "bills":
        bills = services.pipeline.list_bills() if args.all else services.pipeline.active_alerts()
        now = datetime.utcnow()
        for bill in bills:
            print(format_bill(bill, now))
        if not bills:
            print("No bill alerts.")
        return

    if args.command == "bill-summary":
        summary = services.pipeline.summary()
        print(f"active: {summary.total}")
        print(f"overdue: {summary.overdue}")
        print(f"critical: {summary.critical}")
        print(f"due_this_week: {summary.due_this_week}")
        print(f"total_amount: {format_amount(summary.total_amount)}")
        return

    if args.command == "dismiss-bill":
        bill = asyncio.run(services.pipeline.dismiss_bill(args.bill_id))
        print(f"Dismissed {bill.bill_id} ({bill.provider}).")
        return

    if args.command == "search":
        result = services.search.search(
            args.query, category=args.category, unread_only=args.unread, limit=args.limit
        )
        print(f"{result.total_count} matches")
        for item in result.messages:
            print(f"{item.message_id}: [{item.category}] {item.message.subject}")
        return

    if args.command == "stats":
        snapshot = services.stats.snapshot()
        for section, values in snapshot.items():
            print(f"{section}:")
            for key, value in values.items():
                print(f"  {key}: {value}")
        return

    if args.command == "show-rules":
        rule_set = services.pipeline.rule_set
        print(f"{rule_set.name} (version {rule_set.version}, threshold {rule_set.confidence_threshold})")
        for rule in rule_set.enabled_rules():
            print(f"{rule.category}: {', '.join(rule.keywords)}")
            if rule.sender_domains:
                print(f"  domains: {', '.join(rule.sender_domains)}")
        return

    if args.command == "add-keyword":
        rule_set = asyncio.run(services.rules.add_keyword(args.category, args.keyword))
        print(f"Added '{args.keyword}' to {args.category}; rules now {rule_set.version}.")
        return

    if args.command == "remove-keyword":
        rule_set = asyncio.run(services.rules.remove_keyword(args.category, args.keyword))
        print(f"Removed '{args.keyword}' from {args.category}; rules now {rule_set.version}.")
        return

    if args.command == "add-sender-domain":
        rule_set = asyncio.run(services.rules.add_sender_domain(args.category, args.domain))
        print(f"Added domain {args.domain} to {args.category}; rules now {rule_set.version}.")
        return

    if args.command == "ai-requests":
        for request in services.ai_audit.list_requests(limit=args.limit):
            print(f"{request['id']}: {request['provider']}/{request['model']} {request['timestamp']}")
        return


if __name__ == "__main__":
    run_cli()
