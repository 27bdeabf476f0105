"""Summary: Tests for AI abstraction layer.

Importance: Ensures AI providers and the classification fallback behave deterministically.
Alternatives: Skip AI testing and rely on manual verification.
"""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

from inboxledger.ai import (
    CLASSIFICATION_PURPOSE,
    AiCategoryFallback,
    AiProviderFactory,
    MockAiProvider,
    OllamaProvider,
    build_classification_prompt,
    parse_verdict,
)
from inboxledger.config import AppConfig
from inboxledger.storage.sqlite_store import SqliteStore


def test_mock_ai_provider_returns_response() -> None:
    """Summary: Verify mock AI provider returns deterministic text.

    Importance: Confirms basic AI abstraction behavior for tests.
    Alternatives: Use live providers in integration tests only.
    """

    provider = MockAiProvider()
    completion = provider.generate_text("Hello", "test")
    assert completion.content.startswith("[mock:test]")
    assert completion.latency_ms >= 0
    verdict = json.loads(provider.generate_text("Hello", CLASSIFICATION_PURPOSE).content)
    assert verdict == {"category": "regular", "confidence": 0.5}


def test_parse_verdict_variants() -> None:
    """Summary: Ensure JSON, JSON in prose, and bare words are understood.

    Importance: Models rarely answer in exactly the requested shape.
    Alternatives: Require strict JSON.
    """

    assert parse_verdict('{"category": "Work", "confidence": 0.8}').category == "work"
    embedded = parse_verdict('Sure! {"category": "personal"} hope that helps')
    assert embedded.category == "personal"
    assert embedded.confidence == 0.0
    assert parse_verdict("I think this is important.").category == "important"
    with pytest.raises(ValueError):
        parse_verdict("no idea")


def test_prompt_lists_categories() -> None:
    """Summary: Verify the prompt names every category and truncates long mail.

    Importance: Constrains the model to the known taxonomy.
    Alternatives: Let the model invent categories.
    """

    prompt = build_classification_prompt("x" * 5000)
    assert "emergency, important, subscription, work, personal, regular" in prompt
    assert len(prompt) < 2300


def test_factory_selects_providers(app_config: AppConfig) -> None:
    """Summary: Ensure provider selection follows configuration.

    Importance: The none setting disables the fallback entirely.
    Alternatives: Always build a provider.
    """

    assert AiProviderFactory(app_config).build() is None
    assert isinstance(AiProviderFactory(replace(app_config, ai_provider="mock")).build(), MockAiProvider)
    assert isinstance(
        AiProviderFactory(replace(app_config, ai_provider="ollama")).build(), OllamaProvider
    )
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        AiProviderFactory(replace(app_config, ai_provider="openai")).build()


@pytest.mark.asyncio
async def test_fallback_logs_audit_rows(tmp_path: Path) -> None:
    """Summary: Verify the fallback returns a verdict and records the exchange.

    Importance: Every AI call must be auditable.
    Alternatives: Log prompts only to application logs.
    """

    store = SqliteStore(str(tmp_path / "ai.db"))
    store.initialize()
    fallback = AiCategoryFallback(MockAiProvider(), store)
    verdict = await fallback("hello there")
    assert verdict.category == "regular"
    requests = store.list_ai_requests(5)
    responses = store.list_ai_responses(5)
    assert len(requests) == 1
    assert requests[0].purpose == CLASSIFICATION_PURPOSE
    assert "hello there" in requests[0].prompt
    assert responses[0].request_id == requests[0].id
