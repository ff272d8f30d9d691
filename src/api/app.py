"""FastAPI application: LINE webhook endpoint and the internal messaging API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from src.api.auth_middleware import AuthMiddleware
from src.audit.logger import AuditLogger
from src.config import LineSettings
from src.messaging.service import LineMessagingService
from src.models import BatchResult, ErrorInfo, ErrorType, SendResult
from src.webhook.handlers import EventDispatcher
from src.webhook.receiver import LineWebhookReceiver, WebhookState
from src.webhook.signature import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

API_PREFIX = "/api/line-messaging"

# camelCase request options → façade option keys
OPTION_KEYS = {
    "altText": "alt_text",
    "quickReply": "quick_reply",
    "batchSize": "batch_size",
    "batchDelay": "batch_delay",
    "family": "family",
}


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendRequest(_Body):
    user_id: Any = Field(default=None, alias="userId")
    message: Any = None
    options: dict[str, Any] = Field(default_factory=dict)


class BatchRequest(_Body):
    user_ids: Any = Field(default=None, alias="userIds")
    message: Any = None
    options: dict[str, Any] = Field(default_factory=dict)


class TemplateRequest(_Body):
    user_id: Any = Field(default=None, alias="userId")
    template_name: Any = Field(default=None, alias="templateName")
    template_data: Any = Field(default_factory=dict, alias="templateData")
    options: dict[str, Any] = Field(default_factory=dict)


class VerifyRequest(_Body):
    body: str
    signature: str


class QuickPriceAlertRequest(_Body):
    user_id: Any = Field(default=None, alias="userId")
    alert_data: dict[str, Any] = Field(alias="alertData")


class QuickMarketUpdateRequest(_Body):
    user_ids: Any = Field(default=None, alias="userIds")
    market_data: dict[str, Any] = Field(alias="marketData")


def _options(raw: dict[str, Any]) -> dict[str, Any]:
    return {OPTION_KEYS.get(key, key): value for key, value in raw.items()}


def _status_for(error: ErrorInfo | None) -> int:
    if error is None:
        return 200
    if error.type == ErrorType.VALIDATION_ERROR:
        return 400
    if error.type == ErrorType.CONFIGURATION_ERROR:
        return 503
    return 502


def _result_response(result: SendResult | BatchResult) -> JSONResponse:
    body = result.model_dump(mode="json")
    if isinstance(result, BatchResult):
        # Per-recipient failures are reported inside a 200
        status = 200 if result.error is None else _status_for(result.error)
    else:
        status = _status_for(result.error)
    return JSONResponse({"success": result.success, "data": body}, status_code=status)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    settings = LineSettings.from_env()
    return create_app(settings, audit_logger=AuditLogger.from_env(settings.audit_log_path))


def create_app(
    settings: LineSettings,
    transport: httpx.AsyncBaseTransport | None = None,
    audit_logger: AuditLogger | None = None,
    service: LineMessagingService | None = None,
) -> FastAPI:
    """Create the app. ``transport`` replaces the network for the LINE client."""
    service = service or LineMessagingService.from_settings(settings, transport, audit_logger)
    receiver = LineWebhookReceiver(settings.channel_secret, audit_logger)
    dispatcher = EventDispatcher(service.messenger, service.renderer)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await service.aclose()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.service = service
    app.state.dispatcher = dispatcher
    app.add_middleware(AuthMiddleware, token=settings.api_token, audit_logger=audit_logger)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "line_configured": settings.is_configured}

    @app.post("/webhook")
    async def webhook(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        body = await request.body()
        outcome = receiver.receive(
            body,
            request.headers.get(SIGNATURE_HEADER),
            request.client.host if request.client else None,
        )
        if outcome.accepted and outcome.events:
            background_tasks.add_task(dispatcher.dispatch_all, outcome.events)
        if outcome.accepted:
            outcome.state = WebhookState.RESPONDED
        return JSONResponse(outcome.payload, status_code=outcome.status_code)

    @app.post(f"{API_PREFIX}/send")
    async def send(payload: SendRequest) -> JSONResponse:
        result = await service.send_message(payload.user_id, payload.message, _options(payload.options))
        return _result_response(result)

    @app.post(f"{API_PREFIX}/batch")
    async def batch(payload: BatchRequest) -> JSONResponse:
        result = await service.send_batch_message(payload.user_ids, payload.message, _options(payload.options))
        return _result_response(result)

    @app.post(f"{API_PREFIX}/template")
    async def template(payload: TemplateRequest) -> JSONResponse:
        result = await service.send_template_message(
            payload.user_id,
            payload.template_name,
            payload.template_data,
            _options(payload.options),
        )
        return _result_response(result)

    @app.post(f"{API_PREFIX}/quick/price-alert")
    async def quick_price_alert(payload: QuickPriceAlertRequest) -> JSONResponse:
        result = await service.send_template_message(payload.user_id, "priceAlert", payload.alert_data)
        return _result_response(result)

    @app.post(f"{API_PREFIX}/quick/market-update")
    async def quick_market_update(payload: QuickMarketUpdateRequest) -> JSONResponse:
        result = await service.send_batch_template_message(payload.user_ids, "marketUpdate", payload.market_data)
        return _result_response(result)

    @app.get(f"{API_PREFIX}/status")
    async def status() -> dict[str, Any]:
        return {"success": True, "data": service.get_status()}

    @app.get(f"{API_PREFIX}/templates")
    async def templates() -> dict[str, Any]:
        return {"success": True, "data": service.get_available_templates()}

    @app.get(f"{API_PREFIX}/test")
    async def test_connection() -> JSONResponse:
        result = await service.test_connection()
        return JSONResponse(result, status_code=200 if result["success"] else 502)

    @app.post(f"{API_PREFIX}/webhook/verify")
    async def verify(payload: VerifyRequest) -> dict[str, Any]:
        valid = service.validate_webhook_signature(payload.body, payload.signature)
        return {"success": True, "data": {"valid": valid}}

    return app
