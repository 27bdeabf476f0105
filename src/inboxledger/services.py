"""Summary: Core application services for InboxLedger.

Importance: Orchestrates ingestion, classification, bill tracking, and rule changes.
Alternatives: Build a full service layer with dependency injection framework.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from inboxledger.classifier import Classifier
from inboxledger.extractor import BillExtractor
from inboxledger.models import BatchResult, Bill, BillAlertSummary, ClassifiedMessage, Message
from inboxledger.reclassify import ReclassificationDriver, apply_classified, processing_order
from inboxledger.rules import RuleSet, load_rule_set, save_rule_set
from inboxledger.search import SearchResult, category_stats, search
from inboxledger.storage.sqlite_store import SqliteStore
from inboxledger.tracker import BillAlertTracker, BillCollection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionService:
    """Summary: Handles ingestion of messages from providers.

    Importance: Centralizes ingestion logic so redelivered IDs are ignored.
    Alternatives: Ingest directly inside CLI commands.
    """

    store: SqliteStore

    def ingest_messages(self, messages: list[Message]) -> int:
        inserted = self.store.save_messages(messages)
        logger.info("Ingested %s new messages (%s delivered).", inserted, len(messages))
        return inserted


class BillPipeline:
    """Summary: Runs classification, extraction, and bill merging over message batches.

    Importance: Owns the live bill collection and serializes every mutation of it.
    Alternatives: Let each caller merge bills directly against the database.
    """

    def __init__(
        self,
        store: SqliteStore,
        classifier: Classifier,
        extractor: BillExtractor,
        tracker: BillAlertTracker,
    ) -> None:
        self._store = store
        self._classifier = classifier
        self._extractor = extractor
        self._tracker = tracker
        self._lock = asyncio.Lock()
        self._collection = BillCollection(store.list_bills(), store.list_dismissals())
        self._replay: list[Message] | None = None
        classifier.cache.load(store.list_classified(), classifier.rule_set.version)

    @property
    def rule_set(self) -> RuleSet:
        return self._classifier.rule_set

    async def process_batch(self, messages: Iterable[Message]) -> BatchResult:
        """Summary: Classify a batch concurrently, then merge serially.

        Importance: Two facts for the same provider can never both create a bill.
        Alternatives: Merge inside each classification task.
        """

        ordered = processing_order(messages)
        if not ordered:
            return BatchResult()
        self._store.save_messages(ordered)
        while True:
            classifier = self._classifier
            classified = await classifier.classify_batch(ordered)
            async with self._lock:
                if classifier is not self._classifier:
                    # Rules were swapped while classifying; results are stale.
                    logger.info(
                        "Rules changed during a batch of %s messages, classifying again.",
                        len(ordered),
                    )
                    continue
                if self._replay is not None:
                    self._replay.extend(ordered)
                touched, verifications = apply_classified(
                    classified, self._extractor, self._tracker, self._collection
                )
                self._tracker.refresh(self._collection)
                self._store.save_classifications(classified)
                self._store.save_bills(self._collection.snapshot())
                self._store.save_verifications(verifications)
                bills = [self._collection.get(bill.bill_id) for bill in touched]
                break
        logger.info(
            "Processed %s messages: %s bills touched, %s payments verified.",
            len(classified),
            len(bills),
            len(verifications),
        )
        return BatchResult(classified=classified, bills=bills, verifications=verifications)

    async def process_pending(self) -> BatchResult:
        """Summary: Process stored messages not yet classified under the current rules.

        Importance: Lets ingestion and processing run as separate steps.
        Alternatives: Process every message on every run.
        """

        version = self._classifier.rule_set.version
        pending = [
            message
            for message in self._store.all_messages()
            if self._classifier.cache.get(message.message_id, version) is None
        ]
        return await self.process_batch(pending)

    async def reclassify_all(self, classifier: Classifier | None = None) -> int:
        """Summary: Rebuild all derived state in a shadow collection and swap it in.

        Importance: Live batches keep running and are replayed after the swap.
        Alternatives: Stop ingestion while reclassifying.
        """

        target = classifier or self._classifier.with_rule_set(self._classifier.rule_set)
        async with self._lock:
            if self._replay is not None:
                raise RuntimeError("A reclassification is already running")
            self._replay = []
            dismissed = set(self._collection.dismissed_cycles)
        try:
            driver = ReclassificationDriver(target, self._extractor, self._tracker)
            result = await driver.run(self._store.all_messages(), dismissed)
            async with self._lock:
                pending = self._replay or []
                shadow = result.collection
                for bill_id, due_date in self._collection.dismissed_cycles - dismissed:
                    bill = shadow.get(bill_id)
                    if bill is not None and bill.due_date == due_date and bill.is_active:
                        self._tracker.dismiss(shadow, bill_id)
                    shadow.dismissed_cycles.add((bill_id, due_date))
                self._store.replace_derived_state(
                    result.classified, shadow.snapshot(), result.verifications
                )
                self._classifier = target
                self._collection = shadow
        finally:
            async with self._lock:
                self._replay = None
        if pending:
            logger.info("Replaying %s messages processed during reclassification.", len(pending))
            await self.process_batch(pending)
        return len(result.classified)

    async def dismiss_bill(self, bill_id: str) -> Bill:
        """Summary: Dismiss a bill at the user's request.

        Importance: Persists the decision so reclassification honours it.
        Alternatives: Hide bills only in the UI.
        """

        async with self._lock:
            bill = self._tracker.dismiss(self._collection, bill_id)
            self._store.add_dismissal(bill.bill_id, bill.due_date)
            self._store.save_bills([bill])
        logger.info("Dismissed bill %s.", bill_id)
        return bill

    def get_bill(self, bill_id: str) -> Bill:
        bill = self._view().get(bill_id)
        if bill is None:
            raise ValueError(f"Bill not found: {bill_id}")
        return bill

    def list_bills(self, status: str | None = None) -> list[Bill]:
        bills = self._view().snapshot()
        return [bill for bill in bills if status is None or bill.status == status]

    def active_alerts(self) -> list[Bill]:
        return self._tracker.active_alerts(self._view())

    def summary(self) -> BillAlertSummary:
        return self._tracker.summary(self._view())

    def _view(self) -> BillCollection:
        # Status depends on today's date; derive it on a copy so reads never mutate.
        view = BillCollection(self._collection.snapshot(), self._collection.dismissed_cycles)
        self._tracker.refresh(view)
        return view


@dataclass(frozen=True)
class RuleService:
    """Summary: Edits the rule set file and reclassifies after each change.

    Importance: Rule edits take effect on all history, not only new mail.
    Alternatives: Apply new rules to future messages only.
    """

    rules_path: Path
    pipeline: BillPipeline
    build_classifier: Callable[[RuleSet], Classifier]

    def current(self) -> RuleSet:
        return load_rule_set(self.rules_path)

    async def add_keyword(self, category: str, keyword: str) -> RuleSet:
        return await self._apply(self.current().with_keyword(category, keyword))

    async def remove_keyword(self, category: str, keyword: str) -> RuleSet:
        return await self._apply(self.current().without_keyword(category, keyword))

    async def add_sender_domain(self, category: str, domain: str) -> RuleSet:
        return await self._apply(self.current().with_sender_domain(category, domain))

    async def set_enabled(self, category: str, enabled: bool) -> RuleSet:
        return await self._apply(self.current().with_enabled(category, enabled))

    async def replace(self, data: dict[str, Any]) -> RuleSet:
        return await self._apply(RuleSet.from_dict(data))

    async def _apply(self, rule_set: RuleSet) -> RuleSet:
        """Summary: Save the rule set and reclassify when its version changed.

        Importance: The classifier is built first so an invalid rule set is never saved.
        Alternatives: Save first and validate lazily.
        """

        classifier = self.build_classifier(rule_set)
        if rule_set.version == self.pipeline.rule_set.version:
            return rule_set
        save_rule_set(rule_set, self.rules_path)
        logger.info("Rules updated to version %s.", rule_set.version)
        await self.pipeline.reclassify_all(classifier)
        return rule_set


@dataclass(frozen=True)
class SearchService:
    """Summary: Searches classified messages with synonym expansion.

    Importance: Synonyms come from the live rule set.
    Alternatives: Use SQL LIKE queries only.
    """

    store: SqliteStore
    pipeline: BillPipeline
    now: Callable[[], datetime] = field(default=datetime.utcnow)

    def search(
        self,
        query: str,
        category: str | None = None,
        unread_only: bool = False,
        limit: int = 20,
    ) -> SearchResult:
        return search(
            self.store.list_classified(),
            query,
            self.pipeline.rule_set.search_synonyms,
            self.now(),
            category=category,
            unread_only=unread_only,
            limit=limit,
        )

    def list_messages(self, category: str | None = None, limit: int = 20) -> list[ClassifiedMessage]:
        return self.store.list_classified(category=category, limit=limit)


@dataclass(frozen=True)
class StatsService:
    """Summary: Provides lightweight analytics and counts.

    Importance: Enables dashboards and quick health checks.
    Alternatives: Calculate counts directly in the API or UI.
    """

    store: SqliteStore
    pipeline: BillPipeline

    def snapshot(self) -> dict[str, Any]:
        summary = self.pipeline.summary()
        return {
            "storage": self.store.counts(),
            "categories": category_stats(self.store.list_classified()),
            "bills": {
                "active": summary.total,
                "overdue": summary.overdue,
                "critical": summary.critical,
                "due_this_week": summary.due_this_week,
                "total_amount": str(summary.total_amount),
            },
        }


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Provides access to AI audit logs.

    Importance: Enables review of fallback prompts and outputs.
    Alternatives: Use raw database queries or log files.
    """

    store: SqliteStore

    def list_requests(self, limit: int = 20) -> list[dict[str, str | int]]:
        return [
            {
                "id": request.id,
                "provider": request.provider,
                "model": request.model,
                "purpose": request.purpose,
                "timestamp": request.timestamp,
            }
            for request in self.store.list_ai_requests(limit)
        ]

    def list_responses(self, limit: int = 20) -> list[dict[str, str | int]]:
        return [
            {
                "id": response.id,
                "request_id": response.request_id,
                "latency_ms": response.latency_ms,
                "token_estimate": response.token_estimate,
            }
            for response in self.store.list_ai_responses(limit)
        ]
