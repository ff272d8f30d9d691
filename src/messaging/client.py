"""Async client for the LINE Messaging API.

``LineMessenger`` is the single HTTP boundary of the service: it is the only
place that looks at status codes and response bodies, translating them into
the typed errors of ``src.messaging.errors``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import httpx

from src.messaging import validator
from src.messaging.errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    ValidationError,
)
from src.messaging.masking import mask_id
from src.messaging.retry import DEFAULT_MAX_ATTEMPTS, ErrorHandler, RetryAttempt, with_retry
from src.models import BatchError, BatchResult, FlexMessage, SendResult, TextMessage
from src.webhook.signature import verify_signature

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.line.me/v2/bot"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_ALT_TEXT = "NexusTrade notification"
DEFAULT_BATCH_DELAY_MS = 100
USER_AGENT = "NexusTrade-LINE-Messaging/1.0.0"


def to_outbound(
    message: str | Mapping[str, Any] | TextMessage | FlexMessage,
    alt_text: str | None = None,
) -> TextMessage | FlexMessage:
    """Coerce caller input into a typed outbound message.

    A bare mapping is treated as a Flex container; its ``altText`` key (if
    any) is lifted out of the contents.
    """
    if isinstance(message, (TextMessage, FlexMessage)):
        return message
    if isinstance(message, str):
        return TextMessage(text=message)
    contents = dict(message)
    embedded_alt = contents.pop("altText", None)
    return FlexMessage(contents=contents, alt_text=alt_text or embedded_alt or DEFAULT_ALT_TEXT)


def wire_message(
    message: TextMessage | FlexMessage,
    options: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    payload = message.to_line()
    if options and options.get("quick_reply"):
        payload["quickReply"] = dict(options["quick_reply"])
    return payload


def _sent_message_id(body: Any) -> str | None:
    if isinstance(body, dict):
        sent = body.get("sentMessages")
        if isinstance(sent, list) and sent and isinstance(sent[0], dict):
            message_id = sent[0].get("id")
            return str(message_id) if message_id is not None else None
    return None


def _response_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class LineMessenger:
    """Push, reply, profile and quota calls against the LINE Messaging API."""

    def __init__(
        self,
        channel_access_token: str | None,
        channel_secret: str | None,
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        deadline: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._token = channel_access_token or ""
        self._secret = channel_secret or ""
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._max_attempts = max_attempts
        self._deadline = deadline
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None
        self._error_handler = ErrorHandler()

    @property
    def is_configured(self) -> bool:
        return bool(self._token and self._secret)

    async def __aenter__(self) -> LineMessenger:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._api_base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
            )
        return self._client

    def _require_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(
                "LINE messaging is not configured: missing LINE_CHANNEL_ACCESS_TOKEN "
                "or LINE_CHANNEL_SECRET environment variable",
            )

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        self._require_configured()
        try:
            response = await self._http().request(method, path, json=payload)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"LINE API request timed out: {exc}", code="ETIMEDOUT") from exc
        except httpx.ConnectError as exc:
            raise NetworkError(f"LINE API connection failed: {exc}", code="ECONNREFUSED") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"LINE API transport error: {exc}", code="ECONNRESET") from exc

        body = _response_body(response)
        if response.status_code == 401:
            raise AuthenticationError("LINE API rejected the channel access token (unauthorized)", body)
        if not response.is_success:
            raise ApiError(
                response.status_code,
                body,
                response.headers.get("x-line-request-id"),
            )
        return body

    def _log_retry(self, attempt: RetryAttempt, error: BaseException) -> None:
        logger.warning(
            "LINE %s failed (attempt %d/%d, %s), retrying in %.2fs",
            attempt.error_info.operation,
            attempt.attempt,
            attempt.max_attempts,
            attempt.error_info.code,
            attempt.delay,
        )

    async def _with_retry(self, call: Callable[[], Awaitable[Any]], operation: str) -> Any:
        return await with_retry(
            call,
            max_attempts=self._max_attempts,
            deadline=self._deadline,
            on_retry=self._log_retry,
            operation_name=operation,
            sleep=self._sleep,
        )

    # --- Push ---

    async def push(
        self,
        recipient: str,
        message: str | Mapping[str, Any] | TextMessage | FlexMessage,
        options: Mapping[str, Any] | None = None,
    ) -> SendResult:
        """Push one message to one recipient, retrying transient failures.

        Raises the typed error of the final failed attempt.
        """
        options = options or {}
        validator.validate_send_input(recipient, message, options)
        self._require_configured()
        outbound = to_outbound(message, options.get("alt_text"))
        payload = {"to": recipient, "messages": [wire_message(outbound, options)]}

        body = await self._with_retry(
            lambda: self._request("POST", "/message/push", payload),
            "push",
        )
        message_id = _sent_message_id(body)
        logger.info(
            "LINE %s message sent to %s (id=%s)",
            outbound.kind, mask_id(recipient), message_id,
        )
        return SendResult(
            success=True,
            message_id=message_id,
            recipient=mask_id(recipient),
            message_type=outbound.kind,
        )

    async def send_text(
        self,
        recipient: str,
        text: str,
        options: Mapping[str, Any] | None = None,
    ) -> SendResult:
        return await self.push(recipient, TextMessage(text=text), options)

    async def send_flex(
        self,
        recipient: str,
        contents: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> SendResult:
        return await self.push(recipient, contents, options)

    # --- Batch ---

    async def _push_isolated(
        self,
        index: int,
        recipient: Any,
        message: TextMessage | FlexMessage,
        options: Mapping[str, Any],
    ) -> tuple[SendResult, BatchError | None]:
        try:
            return await self.push(recipient, message, options), None
        except Exception as exc:
            info = self._error_handler.handle(exc, "batch_push")
            masked = mask_id(recipient if isinstance(recipient, str) else None)
            result = SendResult(
                success=False,
                recipient=masked,
                message_type=message.kind,
                error=info,
            )
            return result, BatchError(index=index, recipient=masked, error=info)

    async def send_batch(
        self,
        recipients: list[str],
        message: str | Mapping[str, Any] | TextMessage | FlexMessage,
        options: Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Push one message to many recipients.

        Each recipient is validated and sent independently: one bad id or one
        failed send is recorded without affecting the others. ``results`` and
        ``errors`` keep input order.
        """
        options = options or {}
        validator.validate_batch_input(recipients, message, options)
        self._require_configured()
        outbound = to_outbound(message, options.get("alt_text"))
        send_options = {k: options[k] for k in ("quick_reply",) if options.get(k)}

        batch_size = options.get("batch_size") or validator.MAX_BATCH_USERS
        batch_delay = options.get("batch_delay")
        indexed = list(enumerate(recipients))
        chunks = [indexed[i:i + batch_size] for i in range(0, len(indexed), batch_size)]

        results: list[SendResult] = []
        errors: list[BatchError] = []
        for chunk_number, chunk in enumerate(chunks):
            outcomes = await asyncio.gather(
                *(self._push_isolated(index, recipient, outbound, send_options) for index, recipient in chunk),
            )
            for result, error in outcomes:
                results.append(result)
                if error is not None:
                    errors.append(error)
            if chunk_number < len(chunks) - 1 and batch_delay is not False:
                delay_ms = DEFAULT_BATCH_DELAY_MS if batch_delay is None else batch_delay
                await self._sleep(delay_ms / 1000)

        successful = sum(1 for result in results if result.success)
        logger.info(
            "LINE batch finished: %d/%d delivered in %d chunk(s)",
            successful, len(recipients), len(chunks),
        )
        return BatchResult(
            success=not errors,
            total_users=len(recipients),
            successful=successful,
            failed=len(errors),
            total_batches=len(chunks),
            results=results,
            errors=errors,
        )

    # --- Reply ---

    async def reply(
        self,
        reply_token: str,
        message: str | Mapping[str, Any] | TextMessage | FlexMessage,
    ) -> SendResult:
        """Answer a webhook event. Reply tokens are single-use, so no retry.

        Failures are logged and returned, never raised.
        """
        try:
            if not reply_token or not isinstance(reply_token, str):
                raise ValidationError("Reply token must not be empty")
            validator.validate_message(message)
            outbound = to_outbound(message)
            body = await self._request(
                "POST",
                "/message/reply",
                {"replyToken": reply_token, "messages": [wire_message(outbound)]},
            )
        except Exception as exc:
            info = self._error_handler.handle(exc, "reply")
            return SendResult(success=False, message_type="reply", error=info)
        return SendResult(success=True, message_id=_sent_message_id(body), message_type=outbound.kind)

    # --- Account ---

    async def get_profile(self, user_id: str) -> dict[str, Any]:
        validator.validate_recipient(user_id)
        body = await self._request("GET", f"/profile/{user_id}")
        return body if isinstance(body, dict) else {}

    async def get_quota(self) -> dict[str, Any]:
        body = await self._request("GET", "/message/quota")
        return body if isinstance(body, dict) else {}

    async def test_connection(self) -> dict[str, Any]:
        """Probe the API with the quota endpoint."""
        try:
            quota = await self.get_quota()
        except Exception as exc:
            info = self._error_handler.handle(exc, "test_connection")
            return {"success": False, "message": info.friendly_message, "error": info.model_dump(mode="json")}
        return {"success": True, "message": "LINE API connection OK", "quota": quota}

    def get_status(self) -> dict[str, Any]:
        return {
            "is_configured": self.is_configured,
            "api_url": self._api_base_url,
            "has_access_token": bool(self._token),
            "has_channel_secret": bool(self._secret),
            "last_check": datetime.now(UTC).isoformat(),
        }

    def validate_signature(self, body: bytes, signature: str | None) -> bool:
        return verify_signature(self._secret, body, signature)
