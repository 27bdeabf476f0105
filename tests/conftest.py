"""Summary: Shared fixtures for InboxLedger tests.

Importance: Keeps message construction and rule loading consistent across test modules.
Alternatives: Repeat message builders in every test file.
"""

from __future__ import annotations

import json
import shutil
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

from inboxledger.config import AppConfig
from inboxledger.models import Message, Sender
from inboxledger.rules import RuleSet, load_rule_set

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_RULES = REPO_ROOT / "config" / "rules.json"
FIXED_NOW = datetime(2025, 3, 1, 9, 0, 0)


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """Summary: Provide a factory for Message records.

    Importance: Tests only spell out the fields they care about.
    Alternatives: Build full Message objects inline.
    """

    def _make(
        message_id: str,
        subject: str,
        body: str = "",
        sender_name: str = "",
        sender_address: str = "someone@example.com",
        timestamp: datetime = datetime(2025, 2, 24, 9, 0, 0),
        read: bool = False,
    ) -> Message:
        return Message(
            message_id=message_id,
            subject=subject,
            sender=Sender(name=sender_name, address=sender_address),
            recipients=("me@example.com",),
            timestamp=timestamp,
            snippet=body[:200],
            body=body,
            read=read,
        )

    return _make


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Summary: Provide a fixed clock at 2025-03-01 09:00.

    Importance: Status and priority derivation depend on today's date.
    Alternatives: Freeze time with a third-party library.
    """

    return lambda: FIXED_NOW


@pytest.fixture
def default_rules() -> RuleSet:
    return load_rule_set(DEFAULT_RULES)


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    """Summary: Copy the default rules into a temporary file.

    Importance: Rule edits in tests never touch the repository copy.
    Alternatives: Write a minimal rules file per test.
    """

    target = tmp_path / "rules.json"
    shutil.copyfile(DEFAULT_RULES, target)
    return target


@pytest.fixture
def app_config(tmp_path: Path, rules_file: Path) -> AppConfig:
    """Summary: Build an AppConfig bound to temporary storage.

    Importance: Ensures tests use isolated storage and rules.
    Alternatives: Load AppConfig from environment variables.
    """

    defaults = json.loads((REPO_ROOT / "config" / "defaults.json").read_text(encoding="utf-8"))
    return AppConfig(
        db_path=str(tmp_path / "test.db"),
        rules_path=str(rules_file),
        ai_provider="none",
        openai_api_key=None,
        openai_model=defaults["openai_model"],
        ollama_url=defaults["ollama_url"],
        ollama_model=defaults["ollama_model"],
        ai_timeout_seconds=5.0,
        ai_max_concurrency=5,
        due_soon_days=7,
        high_amount_threshold=Decimal("500"),
        medium_amount_threshold=Decimal("100"),
        payment_window_days=45,
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
        log_level="INFO",
    )
