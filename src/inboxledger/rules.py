"""Summary: Category taxonomy and versioned rule sets.

Importance: Externalizes every keyword, sender pattern, and weight so classification is configurable.
Alternatives: Hardcode keyword tables inside the classifier.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field, replace
from functools import cached_property
from pathlib import Path
from typing import Any

from inboxledger.models import CATEGORIES, CATEGORY_ORDER


class RuleSetError(ValueError):
    """Summary: Raised when the rule set is missing or malformed.

    Importance: The one configuration failure that must halt processing visibly.
    Alternatives: Silently classify everything as regular.
    """


NO_RULES_MESSAGE = "no classification rules configured"


@dataclass(frozen=True)
class CategoryRule:
    """Summary: Matching rules and weights for one category.

    Importance: Drives deterministic scoring without AI.
    Alternatives: Store free-form descriptions and let an LLM interpret them.
    """

    category: str
    keywords: tuple[str, ...] = ()
    sender_patterns: tuple[str, ...] = ()
    sender_domains: tuple[str, ...] = ()
    regex_patterns: tuple[str, ...] = ()
    weight: int = 1
    subject_bonus: int = 2
    sender_bonus: int = 4
    enabled: bool = True

    @cached_property
    def compiled_patterns(self) -> tuple[re.Pattern[str], ...]:
        return tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.regex_patterns)

    def to_dict(self) -> dict[str, Any]:
        """Summary: Serialize the rule to plain JSON types.

        Importance: Feeds both the rules file and the version fingerprint.
        Alternatives: Use dataclasses.asdict and accept tuple/list drift.
        """

        return {
            "category": self.category,
            "keywords": list(self.keywords),
            "sender_patterns": list(self.sender_patterns),
            "sender_domains": list(self.sender_domains),
            "regex_patterns": list(self.regex_patterns),
            "weight": self.weight,
            "subject_bonus": self.subject_bonus,
            "sender_bonus": self.sender_bonus,
            "enabled": self.enabled,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "CategoryRule":
        """Summary: Build a rule from a JSON mapping, validating it.

        Importance: Rejects unknown categories and broken regexes before classification starts.
        Alternatives: Let bad patterns fail later during matching.
        """

        category = str(data.get("category", "")).strip().lower()
        if category not in CATEGORIES:
            raise RuleSetError(f"Unknown category in rule set: {category!r}")
        regex_patterns = tuple(data.get("regex_patterns", []))
        for pattern in regex_patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise RuleSetError(f"Invalid pattern for {category}: {pattern!r} ({exc})") from exc
        return CategoryRule(
            category=category,
            keywords=_normalize_terms(data.get("keywords", [])),
            sender_patterns=_normalize_terms(data.get("sender_patterns", [])),
            sender_domains=tuple(
                term.lstrip("@") for term in _normalize_terms(data.get("sender_domains", []))
            ),
            regex_patterns=regex_patterns,
            weight=int(data.get("weight", 1)),
            subject_bonus=int(data.get("subject_bonus", 2)),
            sender_bonus=int(data.get("sender_bonus", 4)),
            enabled=bool(data.get("enabled", True)),
        )


@dataclass(frozen=True)
class RuleSet:
    """Summary: Versioned collection of category rules.

    Importance: Passed explicitly to the classifier so tests and tenants can use their own rules.
    Alternatives: Keep a module-level singleton loaded at import time.
    """

    name: str
    rules: tuple[CategoryRule, ...]
    confidence_threshold: int = 3
    promotional_keywords: tuple[str, ...] = ()
    promotional_senders: tuple[str, ...] = ()
    search_synonyms: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for rule in self.rules:
            if rule.category in seen:
                raise RuleSetError(f"Duplicate rule for category: {rule.category}")
            seen.add(rule.category)

    @cached_property
    def version(self) -> str:
        """Summary: Return a fingerprint of the rule content.

        Importance: Cache entries are keyed by this hash so any rule change invalidates them.
        Alternatives: Maintain a manually bumped version number.
        """

        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    def enabled_rules(self) -> list[CategoryRule]:
        """Summary: Return enabled rules in evaluation order.

        Importance: Emergency rules are evaluated first, then billing, then work and personal.
        Alternatives: Evaluate rules in file order.
        """

        ordered = sorted(self.rules, key=lambda rule: _evaluation_rank(rule.category))
        return [rule for rule in ordered if rule.enabled]

    def rule_for(self, category: str) -> CategoryRule | None:
        for rule in self.rules:
            if rule.category == category:
                return rule
        return None

    def validate(self) -> None:
        """Summary: Ensure the rule set can classify anything at all.

        Importance: An empty rule set is a setup error, not a silent default.
        Alternatives: Fall back to a built-in rule set.
        """

        if not self.enabled_rules():
            raise RuleSetError(NO_RULES_MESSAGE)

    def with_keyword(self, category: str, keyword: str) -> "RuleSet":
        rule = self._require_rule(category)
        term = keyword.strip().lower()
        if not term or term in rule.keywords:
            return self
        return self._replace_rule(replace(rule, keywords=rule.keywords + (term,)))

    def without_keyword(self, category: str, keyword: str) -> "RuleSet":
        rule = self._require_rule(category)
        term = keyword.strip().lower()
        keywords = tuple(item for item in rule.keywords if item != term)
        return self._replace_rule(replace(rule, keywords=keywords))

    def with_sender_domain(self, category: str, domain: str) -> "RuleSet":
        rule = self._require_rule(category)
        term = domain.strip().lower().lstrip("@")
        if not term or term in rule.sender_domains:
            return self
        return self._replace_rule(replace(rule, sender_domains=rule.sender_domains + (term,)))

    def with_sender_pattern(self, category: str, pattern: str) -> "RuleSet":
        rule = self._require_rule(category)
        term = pattern.strip().lower()
        if not term or term in rule.sender_patterns:
            return self
        return self._replace_rule(replace(rule, sender_patterns=rule.sender_patterns + (term,)))

    def with_enabled(self, category: str, enabled: bool) -> "RuleSet":
        rule = self._require_rule(category)
        return self._replace_rule(replace(rule, enabled=enabled))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "confidence_threshold": self.confidence_threshold,
            "categories": [rule.to_dict() for rule in self.rules],
            "promotional_keywords": list(self.promotional_keywords),
            "promotional_senders": list(self.promotional_senders),
            "search_synonyms": {
                key: list(values) for key, values in sorted(self.search_synonyms.items())
            },
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RuleSet":
        """Summary: Build and validate a rule set from a JSON mapping.

        Importance: Single parsing path for files, API payloads, and tests.
        Alternatives: Accept loosely typed dicts throughout the classifier.
        """

        if not isinstance(data, dict):
            raise RuleSetError(NO_RULES_MESSAGE)
        raw_rules = data.get("categories") or []
        if not isinstance(raw_rules, list):
            raise RuleSetError("Rule set 'categories' must be a list")
        synonyms = data.get("search_synonyms") or {}
        rule_set = RuleSet(
            name=str(data.get("name", "custom")),
            rules=tuple(CategoryRule.from_dict(item) for item in raw_rules),
            confidence_threshold=int(data.get("confidence_threshold", 3)),
            promotional_keywords=_normalize_terms(data.get("promotional_keywords", [])),
            promotional_senders=_normalize_terms(data.get("promotional_senders", [])),
            search_synonyms={
                str(key).lower(): _normalize_terms(values) for key, values in synonyms.items()
            },
        )
        rule_set.validate()
        return rule_set

    def _require_rule(self, category: str) -> CategoryRule:
        rule = self.rule_for(category.strip().lower())
        if rule is None:
            raise RuleSetError(f"No rule configured for category: {category}")
        return rule

    def _replace_rule(self, updated: CategoryRule) -> "RuleSet":
        rules = tuple(updated if rule.category == updated.category else rule for rule in self.rules)
        return replace(self, rules=rules)


def load_rule_set(path: Path) -> RuleSet:
    """Summary: Load a rule set from a JSON file.

    Importance: Rules live in configuration so they can change without code edits.
    Alternatives: Ship rules as Python constants.
    """

    if not path.exists():
        raise RuleSetError(f"{NO_RULES_MESSAGE} (missing {path})")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RuleSetError(f"Malformed rules file {path}: {exc}") from exc
    return RuleSet.from_dict(data)


def save_rule_set(rule_set: RuleSet, path: Path) -> None:
    """Summary: Persist a rule set as JSON.

    Importance: Keeps rule edits from the CLI and API durable.
    Alternatives: Store rules in the database.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(rule_set.to_dict(), indent=2) + "\n", encoding="utf-8")


def _evaluation_rank(category: str) -> int:
    # emergency, subscription, work, personal, then the remainder
    preferred = ("emergency", "subscription", "work", "personal")
    if category in preferred:
        return preferred.index(category)
    return len(preferred) + CATEGORY_ORDER.index(category)


def _normalize_terms(values: Any) -> tuple[str, ...]:
    if isinstance(values, str):
        values = [values]
    terms: list[str] = []
    for value in values or []:
        term = str(value).strip().lower()
        if term and term not in terms:
            terms.append(term)
    return tuple(terms)
