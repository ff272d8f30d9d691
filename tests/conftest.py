"""Shared test fixtures for the NexusTrade LINE messaging service."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.audit.logger import AuditLogger
from src.config import LineSettings
from src.messaging.client import LineMessenger
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.templates.renderer import TemplateRenderer
from src.webhook.signature import compute_signature

ACCESS_TOKEN = "test-channel-access-token"
CHANNEL_SECRET = "test-channel-secret"
API_TOKEN = "internal-api-token-12345"
USER_ID = "U" + "a" * 32
OTHER_USER_ID = "U" + "b" * 32
MESSAGE_ID = "461230966842064897"
FIXED_NOW = datetime(2025, 1, 15, 9, 30, 0, tzinfo=UTC)

Responder = Callable[[httpx.Request], httpx.Response]


class LineApiStub:
    """Scripted stand-in for the LINE Messaging API behind ``httpx.MockTransport``.

    ``script(path, *steps)`` queues responses for a path; a step is an
    ``httpx.Response``, an exception to raise, or a callable taking the
    request. Unscripted calls get a default success.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._scripts: dict[str, list[Any]] = {}

    def script(self, path: str, *steps: Any) -> None:
        self._scripts.setdefault(path, []).extend(steps)

    def calls(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith(path)]

    def bodies(self, path: str) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.calls(path)]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _default(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/message/push"):
            return httpx.Response(200, json={"sentMessages": [{"id": MESSAGE_ID, "quotaConsumption": 1}]})
        if path.endswith("/message/reply"):
            return httpx.Response(200, json={"sentMessages": [{"id": "reply-1"}]})
        if "/profile/" in path:
            return httpx.Response(200, json={"userId": path.rsplit("/", 1)[-1], "displayName": "Alice"})
        if path.endswith("/message/quota"):
            return httpx.Response(200, json={"type": "limited", "value": 1000})
        return httpx.Response(404, json={"message": "Not found"})

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, steps in self._scripts.items():
            if request.url.path.endswith(suffix) and steps:
                step = steps.pop(0)
                if isinstance(step, BaseException):
                    raise step
                if callable(step):
                    return step(request)
                return step
        return self._default(request)


@pytest.fixture
def line_api() -> LineApiStub:
    return LineApiStub()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def messenger(line_api: LineApiStub, fake_sleep: AsyncMock) -> LineMessenger:
    return LineMessenger(
        ACCESS_TOKEN,
        CHANNEL_SECRET,
        transport=line_api.transport,
        sleep=fake_sleep,
    )


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer(clock=lambda: FIXED_NOW, website_url="https://nexustrade.test")


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


# --- Factory functions for test data ---


def make_settings(**kwargs: Any) -> LineSettings:
    """Factory for LineSettings with working credentials."""
    defaults: dict[str, Any] = {
        "channel_access_token": ACCESS_TOKEN,
        "channel_secret": CHANNEL_SECRET,
        "website_url": "https://nexustrade.test",
        "api_token": API_TOKEN,
        "retry_deadline": None,
    }
    defaults.update(kwargs)
    return LineSettings(**defaults)


def make_audit_event(**kwargs: Any) -> AuditEvent:
    """Factory for AuditEvent with sensible defaults."""
    defaults: dict[str, Any] = {
        "event_type": AuditEventType.MESSAGE_SENT,
        "action": "send_message",
        "result": "success",
        "risk_level": RiskLevel.INFO,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)


def make_event(event_type: str = "message", **kwargs: Any) -> dict[str, Any]:
    """Factory for a raw LINE webhook event dict."""
    event: dict[str, Any] = {
        "type": event_type,
        "timestamp": 1736933400000,
        "source": {"type": "user", "userId": USER_ID},
        "replyToken": "reply-token-0001",
        "webhookEventId": "01HEVENT0000000000000000",
    }
    event.update(kwargs)
    return event


def make_text_event(text: str, **kwargs: Any) -> dict[str, Any]:
    return make_event("message", message={"id": "m1", "type": "text", "text": text}, **kwargs)


def make_webhook_body(*events: dict[str, Any]) -> bytes:
    return json.dumps({"destination": "Ubot", "events": list(events)}).encode()


def sign(body: bytes, secret: str = CHANNEL_SECRET) -> str:
    return compute_signature(secret, body)


def price_alert_data(**kwargs: Any) -> dict[str, Any]:
    data: dict[str, Any] = {
        "symbol": "BTCUSDT",
        "currentPrice": "65000.00",
        "targetPrice": "60000",
        "alertType": "above",
        "changePercent": 8.33,
    }
    data.update(kwargs)
    return data
