"""Summary: AI provider abstraction and the classification fallback adapter.

Importance: Centralizes LLM access so the classifier only sees a normalized async verdict.
Alternatives: Call provider SDKs directly inside the classifier.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from inboxledger.config import AppConfig
from inboxledger.models import CATEGORY_ORDER, AiCompletion, AiRequest, AiResponse, AiVerdict

if TYPE_CHECKING:
    from inboxledger.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

CLASSIFICATION_PURPOSE = "email_classification"


class AiProvider(ABC):
    """Summary: Abstract interface for AI text generation.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    name = "abstract"
    model = ""

    @abstractmethod
    def generate_text(self, prompt: str, purpose: str) -> AiCompletion:
        """Summary: Generate a response for a prompt.

        Importance: Every provider answers with the same completion shape.
        Alternatives: Return provider-specific response objects directly.
        """


class MockAiProvider(AiProvider):
    """Summary: Deterministic AI provider for local testing.

    Importance: Enables offline workflows and repeatable reclassification.
    Alternatives: Use a small local LLM for all development tasks.
    """

    name = "mock"
    model = "mock"

    def generate_text(self, prompt: str, purpose: str) -> AiCompletion:
        """Summary: Return a canned response for the purpose.

        Importance: Classification prompts get a fixed verdict so runs are reproducible.
        Alternatives: Use fixture-based responses loaded from files.
        """

        started = time.time()
        if purpose == CLASSIFICATION_PURPOSE:
            content = json.dumps({"category": "regular", "confidence": 0.5})
        else:
            content = f"[mock:{purpose}] {prompt[:240]}"
        latency_ms = int((time.time() - started) * 1000)
        return AiCompletion(
            content=content,
            tokens=estimate_tokens(prompt) + estimate_tokens(content),
            provider=self.name,
            model=self.model,
            latency_ms=latency_ms,
        )


class OllamaProvider(AiProvider):
    """Summary: AI provider that targets a local Ollama server.

    Importance: Supports privacy-sensitive classification on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    name = "ollama"

    def __init__(self, base_url: str, model: str) -> None:
        self._base_url = base_url.rstrip("/")
        self.model = model

    def generate_text(self, prompt: str, purpose: str) -> AiCompletion:
        """Summary: Generate text using the Ollama HTTP API.

        Importance: Enables local inference for ambiguous messages.
        Alternatives: Use Ollama's CLI and parse its output.
        """

        payload = json.dumps({"model": self.model, "prompt": prompt, "stream": False})
        request = urllib.request.Request(
            url=f"{self._base_url}/api/generate",
            data=payload.encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=60) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError as exc:
            raise RuntimeError(f"Ollama request failed: {exc}") from exc
        content = raw.get("response", "")
        tokens = int(raw.get("prompt_eval_count", 0)) + int(raw.get("eval_count", 0))
        return AiCompletion(
            content=content,
            tokens=tokens or estimate_tokens(prompt + content),
            provider=self.name,
            model=self.model,
            latency_ms=int((time.time() - started) * 1000),
        )


class OpenAiProvider(AiProvider):
    """Summary: AI provider using OpenAI's chat completion API.

    Importance: Enables cloud-grade classification when configured.
    Alternatives: Use other cloud providers or a local model.
    """

    name = "openai"

    def __init__(self, api_key: str, model: str) -> None:
        self._api_key = api_key
        self.model = model

    def generate_text(self, prompt: str, purpose: str) -> AiCompletion:
        """Summary: Generate text using OpenAI chat completions.

        Importance: Normalizes the chat payload into a completion at the boundary.
        Alternatives: Use the responses API or a different provider.
        """

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": f"You are InboxLedger. Task: {purpose}."},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0,
        }
        request = urllib.request.Request(
            url="https://api.openai.com/v1/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=60) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError as exc:
            raise RuntimeError(f"OpenAI request failed: {exc}") from exc
        content = raw["choices"][0]["message"]["content"]
        usage = raw.get("usage") or {}
        return AiCompletion(
            content=content,
            tokens=int(usage.get("total_tokens", 0)) or estimate_tokens(prompt + content),
            provider=self.name,
            model=raw.get("model", self.model),
            latency_ms=int((time.time() - started) * 1000),
        )


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting AI providers from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider | None:
        """Summary: Construct the configured AI provider, or None when disabled.

        Importance: Ensures consistent provider selection across services.
        Alternatives: Use dependency injection frameworks.
        """

        if self.config.ai_provider == "none":
            return None
        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model)
        return MockAiProvider()


class AiCategoryFallback:
    """Summary: Async classification fallback backed by an AI provider.

    Importance: Adapts blocking HTTP providers to the classifier's async contract with an audit trail.
    Alternatives: Make every provider natively async.
    """

    def __init__(self, provider: AiProvider, store: "SqliteStore | None" = None) -> None:
        self._provider = provider
        self._store = store

    async def __call__(self, text: str) -> AiVerdict:
        prompt = build_classification_prompt(text)
        completion = await asyncio.to_thread(self._complete, prompt)
        return parse_verdict(completion.content)

    def _complete(self, prompt: str) -> AiCompletion:
        request_id = None
        if self._store is not None:
            request_id = self._store.log_ai_request(
                AiRequest(
                    provider=self._provider.name,
                    model=self._provider.model,
                    prompt=prompt,
                    purpose=CLASSIFICATION_PURPOSE,
                    timestamp=datetime.utcnow(),
                )
            )
        completion = self._provider.generate_text(prompt, CLASSIFICATION_PURPOSE)
        if self._store is not None and request_id is not None:
            self._store.log_ai_response(
                AiResponse(
                    request_id=request_id,
                    response_text=completion.content,
                    latency_ms=completion.latency_ms,
                    token_estimate=completion.tokens,
                )
            )
        logger.debug(
            "AI %s/%s answered in %sms.", completion.provider, completion.model, completion.latency_ms
        )
        return completion


def build_classification_prompt(text: str) -> str:
    """Summary: Build the classification prompt for a message.

    Importance: Constrains the model to the known taxonomy and a JSON answer.
    Alternatives: Ask for free text and map it afterwards.
    """

    categories = ", ".join(CATEGORY_ORDER)
    return (
        f"Classify this email into exactly one category: {categories}.\n"
        'Answer with JSON only, e.g. {"category": "work", "confidence": 0.8}.\n\n'
        f"Email:\n{text[:2000]}"
    )


def parse_verdict(content: str) -> AiVerdict:
    """Summary: Parse an AI answer into a verdict.

    Importance: Accepts JSON embedded in prose and bare category words.
    Alternatives: Require strict JSON and fail otherwise.
    """

    match = re.search(r"\{.*?\}", content, re.DOTALL)
    if match:
        try:
            data: dict[str, Any] = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = {}
        if data.get("category"):
            return AiVerdict(
                category=str(data["category"]).strip().lower(),
                confidence=float(data.get("confidence") or 0.0),
            )
    lowered = content.lower()
    for category in CATEGORY_ORDER:
        if re.search(rf"\b{category}\b", lowered):
            return AiVerdict(category=category, confidence=0.0)
    raise ValueError(f"Unparseable AI verdict: {content[:80]!r}")


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)
