"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from inboxledger.ai import AiCategoryFallback, AiProviderFactory
from inboxledger.classifier import Classifier
from inboxledger.config import AppConfig
from inboxledger.extractor import BillExtractor
from inboxledger.rules import RuleSet, load_rule_set
from inboxledger.services import (
    AiAuditService,
    BillPipeline,
    IngestionService,
    RuleService,
    SearchService,
    StatsService,
)
from inboxledger.storage.sqlite_store import SqliteStore
from inboxledger.tracker import BillAlertTracker


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for InboxLedger.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    ingestion: IngestionService
    pipeline: BillPipeline
    rules: RuleService
    search: SearchService
    stats: StatsService
    ai_audit: AiAuditService
    store: SqliteStore
    config: AppConfig


def build_classifier_factory(
    config: AppConfig, store: SqliteStore
) -> Callable[[RuleSet], Classifier]:
    """Summary: Build a function that creates classifiers for a rule set.

    Importance: Every classifier shares the configured AI fallback and limits.
    Alternatives: Rebuild the AI provider for each rule change.
    """

    provider = AiProviderFactory(config).build()
    fallback = AiCategoryFallback(provider, store) if provider is not None else None

    def build_classifier(rule_set: RuleSet) -> Classifier:
        return Classifier(
            rule_set,
            ai_fallback=fallback,
            timeout_seconds=config.ai_timeout_seconds,
            max_concurrency=config.ai_max_concurrency,
        )

    return build_classifier


def build_services(
    config: AppConfig, now: Callable[[], datetime] | None = None
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path for the application.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    clock = now or datetime.utcnow
    store = SqliteStore(config.db_path)
    store.initialize()
    build_classifier = build_classifier_factory(config, store)
    classifier = build_classifier(load_rule_set(Path(config.rules_path)))
    tracker = BillAlertTracker(config.tracker_settings(), now=clock)
    pipeline = BillPipeline(store, classifier, BillExtractor(), tracker)
    return AppServices(
        ingestion=IngestionService(store=store),
        pipeline=pipeline,
        rules=RuleService(
            rules_path=Path(config.rules_path),
            pipeline=pipeline,
            build_classifier=build_classifier,
        ),
        search=SearchService(store=store, pipeline=pipeline, now=clock),
        stats=StatsService(store=store, pipeline=pipeline),
        ai_audit=AiAuditService(store=store),
        store=store,
        config=config,
    )
