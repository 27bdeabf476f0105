"""Summary: Application configuration for InboxLedger.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any

from inboxledger.tracker import TrackerSettings

AI_PROVIDERS = ("none", "mock", "ollama", "openai")


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for storage, rules, AI, and alerting.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    rules_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    ai_timeout_seconds: float
    ai_max_concurrency: int
    due_soon_days: int
    high_amount_threshold: Decimal
    medium_amount_threshold: Decimal
    payment_window_days: int
    api_host: str
    api_port: int
    api_key: str
    log_level: str

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        ai_provider = os.getenv("INBOXLEDGER_AI_PROVIDER", defaults["ai_provider"]).lower()
        if ai_provider not in AI_PROVIDERS:
            raise ValueError(f"Unsupported AI provider: {ai_provider}")
        return AppConfig(
            db_path=os.getenv("INBOXLEDGER_DB_PATH", defaults["db_path"]),
            rules_path=os.getenv("INBOXLEDGER_RULES_PATH", defaults["rules_path"]),
            ai_provider=ai_provider,
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            ai_timeout_seconds=float(
                os.getenv("INBOXLEDGER_AI_TIMEOUT_SECONDS", defaults["ai_timeout_seconds"])
            ),
            ai_max_concurrency=int(
                os.getenv("INBOXLEDGER_AI_MAX_CONCURRENCY", defaults["ai_max_concurrency"])
            ),
            due_soon_days=int(os.getenv("INBOXLEDGER_DUE_SOON_DAYS", defaults["due_soon_days"])),
            high_amount_threshold=Decimal(
                str(os.getenv("INBOXLEDGER_HIGH_AMOUNT_THRESHOLD", defaults["high_amount_threshold"]))
            ),
            medium_amount_threshold=Decimal(
                str(
                    os.getenv(
                        "INBOXLEDGER_MEDIUM_AMOUNT_THRESHOLD", defaults["medium_amount_threshold"]
                    )
                )
            ),
            payment_window_days=int(
                os.getenv("INBOXLEDGER_PAYMENT_WINDOW_DAYS", defaults["payment_window_days"])
            ),
            api_host=os.getenv("INBOXLEDGER_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("INBOXLEDGER_API_PORT", defaults["api_port"])),
            api_key=os.getenv("INBOXLEDGER_API_KEY", defaults["api_key"]),
            log_level=os.getenv("INBOXLEDGER_LOG_LEVEL", defaults["log_level"]).upper(),
        )

    def tracker_settings(self) -> TrackerSettings:
        return TrackerSettings(
            due_soon_days=self.due_soon_days,
            high_amount_threshold=self.high_amount_threshold,
            medium_amount_threshold=self.medium_amount_threshold,
            payment_window_days=self.payment_window_days,
        )


def load_defaults(path: Path) -> dict[str, Any]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip("\"'"))
