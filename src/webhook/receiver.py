"""Webhook ingestion: signature check, body parsing and batch validation.

The receiver decides the HTTP response. Handlers run afterwards, so a slow
or failing handler can never delay the acknowledgement LINE waits for.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.models import AuditEventType
from src.webhook.models import WebhookEvent, WebhookFormatError, parse_events
from src.webhook.signature import verify_signature

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


class WebhookState(str, Enum):
    RECEIVED = "received"
    SIGNATURE_VERIFIED = "signature_verified"
    EVENTS_PARSED = "events_parsed"
    DISPATCHING = "dispatching"
    RESPONDED = "responded"
    SIGNATURE_REJECTED = "signature_rejected"
    MALFORMED_BODY = "malformed_body"
    NOT_CONFIGURED = "not_configured"


@dataclass
class WebhookOutcome:
    state: WebhookState
    status_code: int
    payload: dict[str, Any]
    events: list[WebhookEvent] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status_code == 200


class LineWebhookReceiver:
    """Runs one request through RECEIVED → SIGNATURE_VERIFIED → EVENTS_PARSED.

    On success the outcome is in state DISPATCHING: the caller answers 200
    and hands ``outcome.events`` to the dispatcher.
    """

    def __init__(self, channel_secret: str | None, audit_logger: AuditLogger | None = None) -> None:
        self._secret = channel_secret
        self._audit = audit_logger

    def _reject(
        self,
        state: WebhookState,
        status_code: int,
        error: str,
        source_ip: str | None,
        event_type: AuditEventType = AuditEventType.WEBHOOK_REJECTED,
    ) -> WebhookOutcome:
        logger.warning("Webhook rejected (%s) from %s: %s", state.value, source_ip or "unknown", error)
        if self._audit is not None:
            self._audit.record(
                event_type, "POST /webhook", "rejected",
                source_ip=source_ip, details={"state": state.value, "reason": error},
            )
        return WebhookOutcome(state, status_code, {"ok": False, "error": error})

    def receive(self, body: bytes, signature: str | None, source_ip: str | None = None) -> WebhookOutcome:
        state = WebhookState.RECEIVED
        if not self._secret:
            return self._reject(WebhookState.NOT_CONFIGURED, 503, "Webhook is not configured", source_ip)

        if not verify_signature(self._secret, body, signature):
            return self._reject(
                WebhookState.SIGNATURE_REJECTED, 401, "Invalid signature", source_ip,
                AuditEventType.SIGNATURE_REJECTED,
            )
        state = WebhookState.SIGNATURE_VERIFIED

        try:
            events = parse_events(json.loads(body))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return self._reject(WebhookState.MALFORMED_BODY, 400, "Body is not valid JSON", source_ip)
        except WebhookFormatError as exc:
            return self._reject(WebhookState.MALFORMED_BODY, 400, str(exc), source_ip)
        state = WebhookState.EVENTS_PARSED

        logger.info("Webhook accepted with %d event(s) (%s)", len(events), state.value)
        if self._audit is not None:
            self._audit.record(
                AuditEventType.WEBHOOK_ACCEPTED, "POST /webhook", "success",
                source_ip=source_ip, details={"events": len(events)},
            )
        return WebhookOutcome(
            WebhookState.DISPATCHING,
            200,
            {"ok": True, "events": len(events)},
            events,
        )
