"""Summary: Tests for configuration loading.

Importance: Ensures defaults, .env, and environment overrides behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import os
import shutil
from decimal import Decimal
from pathlib import Path

import pytest

from inboxledger.config import AppConfig, load_defaults, load_dotenv

REPO_DEFAULTS = Path(__file__).resolve().parents[1] / "config" / "defaults.json"

ENV_KEYS = (
    "INBOXLEDGER_DB_PATH",
    "INBOXLEDGER_AI_PROVIDER",
    "INBOXLEDGER_DUE_SOON_DAYS",
    "INBOXLEDGER_HIGH_AMOUNT_THRESHOLD",
    "INBOXLEDGER_LOG_LEVEL",
    "OPENAI_API_KEY",
)


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    (tmp_path / "config").mkdir()
    shutil.copyfile(REPO_DEFAULTS, tmp_path / "config" / "defaults.json")
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms config file is the source of truth for variables.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text("{\"db_path\": \"test.db\"}", encoding="utf-8")
    assert load_defaults(defaults_path)["db_path"] == "test.db"
    with pytest.raises(FileNotFoundError):
        load_defaults(tmp_path / "missing.json")


def test_load_dotenv_sets_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Ensure .env values populate environment variables without overriding.

    Importance: Validates local secret loading without external tools.
    Alternatives: Assume OS environment is always set.
    """

    env_path = tmp_path / ".env"
    env_path.write_text(
        "# local settings\nINBOXLEDGER_AI_PROVIDER='ollama'\nINBOXLEDGER_LOG_LEVEL=debug\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("INBOXLEDGER_AI_PROVIDER", raising=False)
    monkeypatch.setenv("INBOXLEDGER_LOG_LEVEL", "WARNING")
    load_dotenv(env_path)
    assert os.getenv("INBOXLEDGER_AI_PROVIDER") == "ollama"
    assert os.getenv("INBOXLEDGER_LOG_LEVEL") == "WARNING"


def test_app_config_uses_defaults(config_dir: Path) -> None:
    """Summary: Verify AppConfig honors defaults when env is absent.

    Importance: Confirms config file remains the baseline for variables.
    Alternatives: Inline defaults directly in the AppConfig class.
    """

    config = AppConfig.from_env()
    assert config.db_path == "inboxledger.db"
    assert config.rules_path == "config/rules.json"
    assert config.ai_provider == "none"
    assert config.openai_api_key is None
    assert config.api_port == 8000
    assert config.high_amount_threshold == Decimal("500")
    settings = config.tracker_settings()
    assert settings.due_soon_days == 7
    assert settings.payment_window_days == 45


def test_environment_overrides_defaults(
    config_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Summary: Ensure environment variables override the defaults file.

    Importance: Deployments tune thresholds without editing files.
    Alternatives: Require editing defaults.json.
    """

    monkeypatch.setenv("INBOXLEDGER_AI_PROVIDER", "MOCK")
    monkeypatch.setenv("INBOXLEDGER_DUE_SOON_DAYS", "3")
    monkeypatch.setenv("INBOXLEDGER_HIGH_AMOUNT_THRESHOLD", "250.50")
    monkeypatch.setenv("INBOXLEDGER_LOG_LEVEL", "debug")
    config = AppConfig.from_env()
    assert config.ai_provider == "mock"
    assert config.due_soon_days == 3
    assert config.high_amount_threshold == Decimal("250.50")
    assert config.log_level == "DEBUG"


def test_unknown_ai_provider_rejected(config_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify unsupported AI providers fail at startup.

    Importance: Typos should not silently disable the fallback.
    Alternatives: Fall back to no provider.
    """

    monkeypatch.setenv("INBOXLEDGER_AI_PROVIDER", "claude-local")
    with pytest.raises(ValueError, match="Unsupported AI provider"):
        AppConfig.from_env()
