"""Summary: Category classification for incoming messages.

Importance: Assigns every message one priority category with deterministic, cached results.
Alternatives: Use an LLM-based classifier for every message.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Awaitable, Callable, Iterable

from inboxledger.extractor import is_payment_confirmation
from inboxledger.models import (
    CATEGORIES,
    CATEGORY_ORDER,
    EMERGENCY,
    IMPORTANT,
    PERSONAL,
    REGULAR,
    SOURCE_AI,
    SOURCE_RULE,
    SOURCE_RULE_FALLBACK,
    SUBSCRIPTION,
    WORK,
    AiVerdict,
    ClassifiedMessage,
    Message,
)
from inboxledger.rules import CategoryRule, RuleSet, RuleSetError, NO_RULES_MESSAGE

logger = logging.getLogger(__name__)

AiFallback = Callable[[str], Awaitable[Any]]

# Promotional mail never lands in these buckets.
PROMOTION_EXCLUDED = frozenset({EMERGENCY, IMPORTANT, WORK, PERSONAL})
# Payment confirmations must stay eligible for payment verification.
CONFIRMATION_EXCLUDED = frozenset({SUBSCRIPTION})


@dataclass(frozen=True)
class RuleScore:
    """Summary: Aggregate rule scores for one message.

    Importance: Explains why a category won and feeds the AI threshold check.
    Alternatives: Return only the winning category.
    """

    category: str
    score: int
    scores: dict[str, int]
    matched: tuple[str, ...]


@dataclass(frozen=True)
class RuleBasedClassifier:
    """Summary: Keyword, sender, and pattern scoring classifier.

    Importance: Offers deterministic, fast categorization without AI.
    Alternatives: Use a supervised ML classifier.
    """

    rule_set: RuleSet

    def score(self, message: Message) -> RuleScore:
        """Summary: Score every enabled category and pick the winner.

        Importance: Highest aggregate score wins; ties follow the fixed category order.
        Alternatives: Stop at the first matching rule.
        """

        text = normalize_text(message)
        subject = message.subject.lower()
        address = message.sender.address.lower()
        domain = message.sender.domain
        promotional = is_promotional(message, self.rule_set)
        confirmation = is_payment_confirmation(message)
        scores: dict[str, int] = {}
        matched: list[str] = []
        for rule in self.rule_set.enabled_rules():
            if promotional and rule.category in PROMOTION_EXCLUDED:
                continue
            if confirmation and rule.category in CONFIRMATION_EXCLUDED:
                continue
            rule_score, rule_matches = _score_rule(rule, text, subject, address, domain)
            if rule_score:
                scores[rule.category] = rule_score
                matched.extend(f"{rule.category}:{item}" for item in rule_matches)
        if promotional:
            matched.append("promotional")
        if confirmation:
            matched.append("payment confirmation")
        if not scores:
            return RuleScore(category=REGULAR, score=0, scores={}, matched=tuple(matched))
        best = max(
            scores.items(),
            key=lambda item: (item[1], -CATEGORY_ORDER.index(item[0])),
        )
        return RuleScore(
            category=best[0], score=best[1], scores=scores, matched=tuple(matched)
        )


class ClassificationCache:
    """Summary: In-memory cache of classifications keyed by message and rule version.

    Importance: Guarantees repeat classification of a message is a no-op.
    Alternatives: Recompute every time and rely on determinism alone.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], ClassifiedMessage] = {}

    def get(self, message_id: str, version: str) -> ClassifiedMessage | None:
        return self._entries.get((message_id, version))

    def put(self, result: ClassifiedMessage) -> None:
        self._entries[(result.message_id, result.rule_set_version)] = result

    def load(self, results: Iterable[ClassifiedMessage], version: str) -> None:
        """Summary: Warm the cache from persisted classifications of one rule version.

        Importance: Keeps idempotence across process restarts without holding superseded results.
        Alternatives: Start cold and reclassify on boot.
        """

        self.retain(version)
        for result in results:
            if result.rule_set_version == version:
                self.put(result)

    def retain(self, version: str) -> None:
        """Drop every entry computed under another rule version."""

        self._entries = {
            key: value for key, value in self._entries.items() if key[1] == version
        }

    def __len__(self) -> int:
        return len(self._entries)


class Classifier:
    """Summary: Rule-first classifier with an optional AI fallback.

    Importance: Uses AI only for ambiguous messages and never fails because of it.
    Alternatives: Call the AI provider for every message.
    """

    def __init__(
        self,
        rule_set: RuleSet,
        ai_fallback: AiFallback | None = None,
        timeout_seconds: float = 5.0,
        max_concurrency: int = 5,
        cache: ClassificationCache | None = None,
    ) -> None:
        """Summary: Initialize the classifier with explicit configuration.

        Importance: Refuses to run without usable rules.
        Alternatives: Read rules from ambient module state.
        """

        if rule_set is None:
            raise RuleSetError(NO_RULES_MESSAGE)
        rule_set.validate()
        self.rule_set = rule_set
        self._rules = RuleBasedClassifier(rule_set)
        self._ai_fallback = ai_fallback
        self._timeout_seconds = timeout_seconds
        self._max_concurrency = max(1, max_concurrency)
        self.cache = cache or ClassificationCache()

    def with_rule_set(self, rule_set: RuleSet) -> "Classifier":
        """Summary: Build a classifier for other rules with the same AI settings.

        Importance: Reclassification starts from an empty cache.
        Alternatives: Mutate the rule set of the running classifier.
        """

        return Classifier(
            rule_set,
            ai_fallback=self._ai_fallback,
            timeout_seconds=self._timeout_seconds,
            max_concurrency=self._max_concurrency,
        )

    async def classify(self, message: Message) -> ClassifiedMessage:
        """Summary: Classify one message, using the cache when possible.

        Importance: Same message and rule version always yields the same result.
        Alternatives: Skip caching and accept duplicate AI calls.
        """

        version = self.rule_set.version
        cached = self.cache.get(message.message_id, version)
        if cached is not None:
            return cached
        rule_score = self._rules.score(message)
        category = rule_score.category
        source = SOURCE_RULE
        if rule_score.score < self.rule_set.confidence_threshold and self._ai_fallback:
            category, source = await self._ask_ai(message, rule_score)
        result = ClassifiedMessage(
            message=message,
            category=category,
            confidence_source=source,
            score=rule_score.score,
            rule_set_version=version,
            matched_rules=rule_score.matched,
        )
        self.cache.put(result)
        return result

    async def classify_batch(self, messages: Iterable[Message]) -> list[ClassifiedMessage]:
        """Summary: Classify a batch concurrently and return results in input order.

        Importance: AI calls overlap while duplicate message IDs are classified once.
        Alternatives: Classify sequentially.
        """

        unique: dict[str, Message] = {}
        ordered: list[str] = []
        for message in messages:
            if message.message_id not in unique:
                unique[message.message_id] = message
            ordered.append(message.message_id)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(item: Message) -> ClassifiedMessage:
            async with semaphore:
                return await self.classify(item)

        results = await asyncio.gather(*(_bounded(item) for item in unique.values()))
        by_id = {result.message_id: result for result in results}
        return [by_id[message_id] for message_id in ordered]

    async def _ask_ai(self, message: Message, rule_score: RuleScore) -> tuple[str, str]:
        """Summary: Consult the AI fallback under a timeout.

        Importance: Any AI failure degrades to the best rule guess instead of propagating.
        Alternatives: Retry the AI call until it succeeds.
        """

        text = normalize_text(message)
        try:
            raw = await asyncio.wait_for(self._ai_fallback(text), timeout=self._timeout_seconds)
            verdict = coerce_verdict(raw)
        except Exception as exc:
            logger.warning(
                "AI fallback failed for message %s, using rules (%s).",
                message.message_id,
                exc.__class__.__name__,
            )
            return rule_score.category, SOURCE_RULE_FALLBACK
        logger.info("AI classified message %s as %s.", message.message_id, verdict.category)
        return verdict.category, SOURCE_AI


def coerce_verdict(raw: Any) -> AiVerdict:
    """Summary: Normalize an untrusted AI answer into a verdict.

    Importance: Unknown category strings map to regular.
    Alternatives: Trust the AI output verbatim.
    """

    if isinstance(raw, AiVerdict):
        category, confidence = raw.category, raw.confidence
    elif isinstance(raw, dict):
        category, confidence = raw.get("category"), raw.get("confidence", 0.0)
    else:
        category = getattr(raw, "category", None)
        confidence = getattr(raw, "confidence", 0.0)
    normalized = str(category or "").strip().lower()
    if normalized not in CATEGORIES:
        normalized = REGULAR
    try:
        score = float(confidence or 0.0)
    except (TypeError, ValueError):
        score = 0.0
    return AiVerdict(category=normalized, confidence=score)


def normalize_text(message: Message) -> str:
    """Summary: Build the lowercased search string for a message.

    Importance: Rules and the AI fallback see exactly the same text.
    Alternatives: Match fields separately.
    """

    parts = [
        message.subject,
        message.content,
        message.sender.name,
        message.sender.address,
    ]
    return " ".join(part for part in parts if part).lower()


def is_promotional(message: Message, rule_set: RuleSet) -> bool:
    """Summary: Detect marketing mail from sender and content patterns.

    Importance: Keeps sales mail out of urgent and work buckets.
    Alternatives: Let promotional mail compete on raw keyword scores.
    """

    sender = f"{message.sender.name} {message.sender.address}".lower()
    if any(pattern in sender for pattern in rule_set.promotional_senders):
        return True
    text = f"{message.subject} {message.content}".lower()
    return any(_contains_term(text, term) for term in rule_set.promotional_keywords)


def _score_rule(
    rule: CategoryRule, text: str, subject: str, address: str, domain: str
) -> tuple[int, list[str]]:
    score = 0
    matches: list[str] = []
    for keyword in rule.keywords:
        if _contains_term(text, keyword):
            score += rule.weight
            matches.append(keyword)
            if _contains_term(subject, keyword):
                score += rule.subject_bonus
    for pattern in rule.sender_patterns:
        if pattern in address:
            score += rule.sender_bonus
            matches.append(f"sender {pattern}")
    for sender_domain in rule.sender_domains:
        if domain == sender_domain or domain.endswith(f".{sender_domain}"):
            score += rule.sender_bonus
            matches.append(f"domain {sender_domain}")
    for pattern in rule.compiled_patterns:
        if pattern.search(text):
            score += rule.weight
            matches.append(f"pattern {pattern.pattern}")
            if pattern.search(subject):
                score += rule.subject_bonus
    return score, matches


def _contains_term(text: str, term: str) -> bool:
    return _term_pattern(term).search(text) is not None


@lru_cache(maxsize=4096)
def _term_pattern(term: str) -> re.Pattern[str]:
    # Word boundaries only apply at edges that are word characters ("50% off").
    prefix = r"(?<!\w)" if term[:1].isalnum() else ""
    suffix = r"(?!\w)" if term[-1:].isalnum() else ""
    return re.compile(f"{prefix}{re.escape(term)}{suffix}")
