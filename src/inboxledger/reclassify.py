"""Summary: Full re-derivation of classifications and bills from message history.

Importance: Rule changes never leave stale categories or bills behind.
Alternatives: Patch only the messages whose rules changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from inboxledger.classifier import Classifier
from inboxledger.extractor import BillExtractor
from inboxledger.models import Bill, ClassifiedMessage, Message, PaymentVerification
from inboxledger.tracker import BillAlertTracker, BillCollection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReclassificationResult:
    """Summary: Shadow state produced by a reclassification run.

    Importance: Built off to the side and swapped in only when complete.
    Alternatives: Mutate the live collection while replaying.
    """

    rule_set_version: str
    classified: tuple[ClassifiedMessage, ...]
    bills: tuple[Bill, ...]
    verifications: tuple[PaymentVerification, ...]
    collection: BillCollection


def processing_order(messages: Iterable[Message]) -> list[Message]:
    """Summary: De-duplicate messages and order them by timestamp then ID.

    Importance: The same history always replays in the same order.
    Alternatives: Replay in storage order.
    """

    unique = {message.message_id: message for message in messages}
    return sorted(unique.values(), key=lambda message: (message.timestamp, message.message_id))


def apply_classified(
    classified: Iterable[ClassifiedMessage],
    extractor: BillExtractor,
    tracker: BillAlertTracker,
    collection: BillCollection,
) -> tuple[list[Bill], list[PaymentVerification]]:
    """Summary: Feed classified messages through verification and bill merging.

    Importance: Incremental processing and reclassification share one merge path.
    Alternatives: Keep separate code paths for live and replayed messages.
    """

    touched: dict[str, Bill] = {}
    verifications: list[PaymentVerification] = []
    for item in classified:
        verification = tracker.verify_payment(collection, item)
        if verification is not None:
            verifications.append(verification)
            touched[verification.bill_id] = collection.get(verification.bill_id)
            continue
        fact = extractor.extract(item)
        if fact is None:
            continue
        bill = tracker.merge(collection, fact)
        touched[bill.bill_id] = bill
    return list(touched.values()), verifications


class ReclassificationDriver:
    """Summary: Replays the full history into an empty bill collection.

    Importance: Two runs over the same history and rules produce identical state.
    Alternatives: Keep incremental state forever and hope it stays consistent.
    """

    def __init__(
        self, classifier: Classifier, extractor: BillExtractor, tracker: BillAlertTracker
    ) -> None:
        self._classifier = classifier
        self._extractor = extractor
        self._tracker = tracker

    async def run(
        self,
        messages: Iterable[Message],
        dismissed_cycles: Iterable[tuple[str, date]] = (),
    ) -> ReclassificationResult:
        """Summary: Re-derive classifications, bills, and verifications.

        Importance: Only user dismissals carry over from the previous state.
        Alternatives: Start from the previous bill collection.
        """

        ordered = processing_order(messages)
        classified = await self._classifier.classify_batch(ordered)
        collection = BillCollection(dismissed_cycles=dismissed_cycles)
        _, verifications = apply_classified(
            classified, self._extractor, self._tracker, collection
        )
        self._tracker.refresh(collection)
        logger.info(
            "Reclassified %s messages into %s bills under rules %s.",
            len(classified),
            len(collection),
            self._classifier.rule_set.version,
        )
        return ReclassificationResult(
            rule_set_version=self._classifier.rule_set.version,
            classified=tuple(classified),
            bills=collection.snapshot(),
            verifications=tuple(verifications),
            collection=collection,
        )
