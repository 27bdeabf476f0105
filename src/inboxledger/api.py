"""Summary: FastAPI application for InboxLedger.

Importance: Exposes the read/act surface used by UI and notification clients.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from inboxledger.app import AppServices, build_services
from inboxledger.config import AppConfig
from inboxledger.email import EmlEmailProvider, MockEmailProvider, message_from_dict
from inboxledger.models import CATEGORY_ORDER, BatchResult, ClassifiedMessage
from inboxledger.rules import NO_RULES_MESSAGE, RuleSetError
from inboxledger.storage.sqlite_store import bill_to_dict

logger = logging.getLogger(__name__)


class IngestRequest(BaseModel):
    """Summary: Request payload for mock email ingestion.

    Importance: Keeps ingestion inputs explicit for API clients.
    Alternatives: Use query parameters instead of JSON payloads.
    """

    limit: int = Field(default=50, ge=1, le=500)
    fixture_path: str | None = None
    process: bool = False


class EmlIngestRequest(BaseModel):
    """Summary: Request payload for .eml ingestion.

    Importance: Supports ingestion of exported mail without provider APIs.
    Alternatives: Require IMAP or OAuth providers.
    """

    paths: list[str]
    limit: int = Field(default=25, ge=1, le=500)
    process: bool = False


class SenderPayload(BaseModel):
    name: str = ""
    address: str = ""


class MessagePayload(BaseModel):
    """Summary: A raw message record pushed by a mail collaborator.

    Importance: Lets external fetchers deliver messages without files.
    Alternatives: Only ingest from fixtures and .eml files.
    """

    message_id: str
    subject: str = ""
    sender: SenderPayload
    recipients: list[str] = Field(default_factory=list)
    timestamp: datetime
    snippet: str = ""
    body: str = ""
    read: bool = False


class MessageBatchRequest(BaseModel):
    messages: list[MessagePayload]
    process: bool = True


class KeywordRequest(BaseModel):
    """Summary: Request payload for keyword rule edits.

    Importance: Rule edits over HTTP trigger reclassification.
    Alternatives: Edit the rules file by hand.
    """

    category: str
    keyword: str


class SenderDomainRequest(BaseModel):
    category: str
    domain: str


def classified_to_dict(item: ClassifiedMessage) -> dict[str, Any]:
    message = item.message
    return {
        "message_id": message.message_id,
        "subject": message.subject,
        "sender": {"name": message.sender.name, "address": message.sender.address},
        "timestamp": message.timestamp.isoformat(),
        "snippet": message.snippet,
        "read": message.read,
        "category": item.category,
        "confidence_source": item.confidence_source,
        "score": item.score,
        "rule_set_version": item.rule_set_version,
        "matched_rules": list(item.matched_rules),
    }


def batch_to_dict(result: BatchResult) -> dict[str, Any]:
    return {
        "classified": len(result.classified),
        "bills": [bill_to_dict(bill) for bill in result.bills],
        "verifications": [
            {
                "bill_id": item.bill_id,
                "message_id": item.message_id,
                "method": item.method,
                "confirmation_number": item.confirmation_number,
            }
            for item in result.verifications
        ],
    }


def create_app(config: AppConfig, now: Callable[[], datetime] | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to InboxLedger services.

    Importance: A missing rule set leaves the app up but answering 503 with a setup message.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, config.log_level, logging.INFO),
            format="%(levelname)s %(name)s: %(message)s",
        )
    app = FastAPI(title="InboxLedger API", version="0.1.0")
    try:
        app.state.services = build_services(config, now=now)
    except RuleSetError as exc:
        logger.error("Rule set unavailable: %s", exc)
        app.state.services = None

    @app.exception_handler(RuleSetError)
    async def rule_set_error(request: Request, exc: RuleSetError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def require_services() -> AppServices:
        if app.state.services is None:
            raise HTTPException(status_code=503, detail=NO_RULES_MESSAGE)
        return app.state.services

    guarded = [Depends(require_api_key)]

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Reports configuration problems without failing the probe.
        Alternatives: Use a metrics endpoint only.
        """

        if app.state.services is None:
            return {"status": "degraded", "detail": NO_RULES_MESSAGE}
        return {"status": "ok", "rules": app.state.services.pipeline.rule_set.version}

    @app.post("/ingest/mock", dependencies=guarded)
    async def ingest_mock(
        payload: IngestRequest, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        fixture_path = (
            Path(payload.fixture_path) if payload.fixture_path else Path("data/mock_messages.json")
        )
        if not fixture_path.exists():
            raise HTTPException(status_code=404, detail="Fixture not found")
        messages = MockEmailProvider(fixture_path).fetch_recent(payload.limit)
        inserted = services.ingestion.ingest_messages(messages)
        response: dict[str, Any] = {"ingested": inserted}
        if payload.process:
            response["processed"] = batch_to_dict(await services.pipeline.process_batch(messages))
        return response

    @app.post("/ingest/eml", dependencies=guarded)
    async def ingest_eml(
        payload: EmlIngestRequest, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        eml_paths = [Path(path) for path in payload.paths]
        if not eml_paths:
            raise HTTPException(status_code=400, detail="No .eml paths provided")
        missing = [str(path) for path in eml_paths if not path.exists()]
        if missing:
            raise HTTPException(status_code=404, detail=f"Files not found: {', '.join(missing)}")
        messages = EmlEmailProvider(eml_paths).fetch_recent(payload.limit)
        inserted = services.ingestion.ingest_messages(messages)
        response: dict[str, Any] = {"ingested": inserted}
        if payload.process:
            response["processed"] = batch_to_dict(await services.pipeline.process_batch(messages))
        return response

    @app.post("/messages", dependencies=guarded)
    async def push_messages(
        payload: MessageBatchRequest, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        """Summary: Accept raw message records from a mail collaborator.

        Importance: Redelivered message IDs are harmless.
        Alternatives: Poll a mailbox from inside the service.
        """

        messages = [
            message_from_dict(item.model_dump(mode="json")) for item in payload.messages
        ]
        inserted = services.ingestion.ingest_messages(messages)
        response: dict[str, Any] = {"ingested": inserted}
        if payload.process:
            response["processed"] = batch_to_dict(await services.pipeline.process_batch(messages))
        return response

    @app.post("/process", dependencies=guarded)
    async def process(services: AppServices = Depends(require_services)) -> dict[str, Any]:
        return batch_to_dict(await services.pipeline.process_pending())

    @app.post("/reclassify", dependencies=guarded)
    async def reclassify(services: AppServices = Depends(require_services)) -> dict[str, Any]:
        count = await services.pipeline.reclassify_all()
        return {"reclassified": count, "rule_set_version": services.pipeline.rule_set.version}

    @app.get("/messages", dependencies=guarded)
    def list_messages(
        category: str | None = None,
        limit: int = 20,
        services: AppServices = Depends(require_services),
    ) -> list[dict[str, Any]]:
        if category and category not in CATEGORY_ORDER:
            raise HTTPException(status_code=400, detail=f"Unknown category: {category}")
        return [
            classified_to_dict(item)
            for item in services.search.list_messages(category=category, limit=limit)
        ]

    @app.get("/bills", dependencies=guarded)
    def list_bills(
        status: str | None = None,
        include_inactive: bool = False,
        services: AppServices = Depends(require_services),
    ) -> list[dict[str, Any]]:
        """Summary: List bill alerts, most urgent first.

        Importance: Primary read surface for the bill dashboard.
        Alternatives: Return bills grouped by provider.
        """

        if status or include_inactive:
            bills = services.pipeline.list_bills(status=status)
        else:
            bills = services.pipeline.active_alerts()
        return [bill_to_dict(bill) for bill in bills]

    @app.get("/bills/summary", dependencies=guarded)
    def bill_summary(services: AppServices = Depends(require_services)) -> dict[str, Any]:
        summary = services.pipeline.summary()
        return {
            "total": summary.total,
            "overdue": summary.overdue,
            "critical": summary.critical,
            "due_this_week": summary.due_this_week,
            "total_amount": str(summary.total_amount),
        }

    @app.get("/bills/{bill_id}", dependencies=guarded)
    def get_bill(bill_id: str, services: AppServices = Depends(require_services)) -> dict[str, Any]:
        try:
            return bill_to_dict(services.pipeline.get_bill(bill_id))
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.post("/bills/{bill_id}/dismiss", dependencies=guarded)
    async def dismiss_bill(
        bill_id: str, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        try:
            bill = await services.pipeline.dismiss_bill(bill_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return bill_to_dict(bill)

    @app.get("/search", dependencies=guarded)
    def search(
        q: str,
        category: str | None = None,
        unread_only: bool = False,
        limit: int = 20,
        services: AppServices = Depends(require_services),
    ) -> dict[str, Any]:
        result = services.search.search(
            q, category=category, unread_only=unread_only, limit=limit
        )
        return {
            "total_count": result.total_count,
            "category_counts": result.category_counts,
            "messages": [classified_to_dict(item) for item in result.messages],
        }

    @app.get("/stats", dependencies=guarded)
    def stats(services: AppServices = Depends(require_services)) -> dict[str, Any]:
        return services.stats.snapshot()

    @app.get("/rules", dependencies=guarded)
    def get_rules(services: AppServices = Depends(require_services)) -> dict[str, Any]:
        rule_set = services.pipeline.rule_set
        return {"version": rule_set.version, **rule_set.to_dict()}

    @app.put("/rules", dependencies=guarded)
    async def replace_rules(
        payload: dict[str, Any], services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        try:
            rule_set = await services.rules.replace(payload)
        except RuleSetError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"version": rule_set.version}

    @app.post("/rules/keywords", dependencies=guarded)
    async def add_keyword(
        payload: KeywordRequest, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        try:
            rule_set = await services.rules.add_keyword(payload.category, payload.keyword)
        except RuleSetError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"version": rule_set.version}

    @app.post("/rules/keywords/remove", dependencies=guarded)
    async def remove_keyword(
        payload: KeywordRequest, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        try:
            rule_set = await services.rules.remove_keyword(payload.category, payload.keyword)
        except RuleSetError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"version": rule_set.version}

    @app.post("/rules/sender-domains", dependencies=guarded)
    async def add_sender_domain(
        payload: SenderDomainRequest, services: AppServices = Depends(require_services)
    ) -> dict[str, Any]:
        try:
            rule_set = await services.rules.add_sender_domain(payload.category, payload.domain)
        except RuleSetError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"version": rule_set.version}

    @app.get("/ai/requests", dependencies=guarded)
    def ai_requests(
        limit: int = 20, services: AppServices = Depends(require_services)
    ) -> list[dict[str, Any]]:
        return services.ai_audit.list_requests(limit=limit)

    @app.get("/ai/responses", dependencies=guarded)
    def ai_responses(
        limit: int = 20, services: AppServices = Depends(require_services)
    ) -> list[dict[str, Any]]:
        return services.ai_audit.list_responses(limit=limit)

    return app
