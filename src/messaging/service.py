"""Module façade: the operations other NexusTrade services call.

Send operations never raise. Failures come back as a failed ``SendResult``
or ``BatchResult`` carrying an ``ErrorInfo`` whose friendly message holds no
token, stack trace or raw response body.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from src.audit.logger import AuditLogger
from src.config import LineSettings
from src.messaging import validator
from src.messaging.client import LineMessenger
from src.messaging.masking import mask_id
from src.messaging.retry import ErrorHandler
from src.models import AuditEventType, BatchResult, FlexMessage, SendResult, TextMessage
from src.templates.renderer import TemplateRenderer, available_templates

logger = logging.getLogger(__name__)

MODULE_NAME = "LINE Messaging Module"
MODULE_VERSION = "1.0.0"

API_ENDPOINTS = {
    "send": "POST /api/line-messaging/send",
    "batch": "POST /api/line-messaging/batch",
    "template": "POST /api/line-messaging/template",
    "status": "GET /api/line-messaging/status",
    "templates": "GET /api/line-messaging/templates",
    "test": "GET /api/line-messaging/test",
    "verify": "POST /api/line-messaging/webhook/verify",
    "quick_price_alert": "POST /api/line-messaging/quick/price-alert",
    "quick_market_update": "POST /api/line-messaging/quick/market-update",
}

MessageInput = str | Mapping[str, Any] | TextMessage | FlexMessage


class LineMessagingService:
    def __init__(
        self,
        messenger: LineMessenger,
        renderer: TemplateRenderer | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.messenger = messenger
        self.renderer = renderer or TemplateRenderer()
        self._audit = audit_logger
        self._errors = ErrorHandler()

    @classmethod
    def from_settings(
        cls,
        settings: LineSettings,
        transport: httpx.AsyncBaseTransport | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> LineMessagingService:
        messenger = LineMessenger(
            settings.channel_access_token,
            settings.channel_secret,
            api_base_url=settings.api_base_url,
            timeout=settings.request_timeout,
            transport=transport,
            max_attempts=settings.max_attempts,
            deadline=settings.retry_deadline,
        )
        if not settings.is_configured:
            logger.warning("LINE credentials are not set; sending is disabled")
        return cls(
            messenger,
            TemplateRenderer(website_url=settings.website_url),
            audit_logger,
        )

    async def aclose(self) -> None:
        await self.messenger.aclose()

    def _audit_send(self, result: SendResult, action: str) -> None:
        if self._audit is None:
            return
        if result.error is None:
            self._audit.record(
                AuditEventType.MESSAGE_SENT, action, "success",
                recipient=result.recipient,
                details={"message_id": result.message_id, "message_type": result.message_type},
            )
        else:
            self._audit.record(
                AuditEventType.MESSAGE_FAILED, action, "failure",
                recipient=result.recipient,
                details={"type": result.error.type.value, "code": result.error.code},
            )

    def _failed(self, exc: Exception, operation: str, recipient: Any, message_type: str | None) -> SendResult:
        info = self._errors.handle(exc, operation)
        return SendResult(
            success=False,
            recipient=mask_id(recipient if isinstance(recipient, str) else None),
            message_type=message_type,
            error=info,
        )

    def _failed_batch(self, exc: Exception, operation: str, recipients: Any) -> BatchResult:
        info = self._errors.handle(exc, operation)
        total = len(recipients) if isinstance(recipients, list) else 0
        return BatchResult(
            success=False,
            total_users=total,
            successful=0,
            failed=total,
            total_batches=0,
            results=[],
            errors=[],
            error=info,
        )

    async def send_message(
        self,
        recipient: str,
        message: MessageInput,
        options: Mapping[str, Any] | None = None,
    ) -> SendResult:
        """Validate and push a text or Flex message to one recipient."""
        options = options or {}
        try:
            validator.validate_send_input(recipient, message, options)
            result = await self.messenger.push(recipient, message, options)
        except Exception as exc:
            result = self._failed(exc, "send_message", recipient, None)
        self._audit_send(result, "send_message")
        return result

    async def send_batch_message(
        self,
        recipients: list[str],
        message: MessageInput,
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Push one message to many recipients.

        Only list-level rules are checked up front; each recipient is
        validated and sent in its own failure domain.
        """
        options = options or {}
        try:
            validator.validate_batch_input(recipients, message, options)
            result = await self.messenger.send_batch(recipients, message, options)
        except Exception as exc:
            result = self._failed_batch(exc, "send_batch_message", recipients)
        if self._audit is not None:
            self._audit.record(
                AuditEventType.BATCH_SENT, "send_batch_message",
                "success" if result.success else "failure",
                details={
                    "total_users": result.total_users,
                    "successful": result.successful,
                    "failed": result.failed,
                    "total_batches": result.total_batches,
                },
            )
        return result

    async def send_template_message(
        self,
        recipient: str,
        template_name: str,
        data: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> SendResult:
        """Render a named template and push it.

        ``options["family"]`` (``"text"`` or ``"flex"``) picks a family when a
        name exists in both.
        """
        options = dict(options or {})
        family = options.pop("family", None)
        data = {} if data is None else data
        try:
            validator.validate_template_input(recipient, template_name, data, options)
            message = self.renderer.render(template_name, data, family)
            result = await self.messenger.push(recipient, message, options)
        except Exception as exc:
            result = self._failed(exc, "send_template_message", recipient, "template")
        self._audit_send(result, f"send_template_message:{template_name}")
        return result

    async def send_batch_template_message(
        self,
        recipients: list[str],
        template_name: str,
        data: Mapping[str, Any] | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Render once, then fan the message out like ``send_batch_message``."""
        options = dict(options or {})
        family = options.pop("family", None)
        data = {} if data is None else data
        try:
            validator.validate_template_name(template_name)
            validator.validate_template_data(data)
            message = self.renderer.render(template_name, data, family)
        except Exception as exc:
            return self._failed_batch(exc, "send_batch_template_message", recipients)
        return await self.send_batch_message(recipients, message, options)

    def get_status(self) -> dict[str, Any]:
        return {
            "module": MODULE_NAME,
            "version": MODULE_VERSION,
            "messenger": self.messenger.get_status(),
            "templates": self.get_available_templates(),
            "endpoints": API_ENDPOINTS,
        }

    def get_available_templates(self) -> dict[str, list[str]]:
        return available_templates()

    def validate_webhook_signature(self, body: bytes | str, signature: str | None) -> bool:
        raw = body.encode("utf-8") if isinstance(body, str) else body
        return self.messenger.validate_signature(raw, signature)

    async def test_connection(self) -> dict[str, Any]:
        return await self.messenger.test_connection()
