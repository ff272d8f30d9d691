"""Exception taxonomy for the LINE messaging client.

Errors are raised as tagged variants at the single HTTP boundary in
``LineMessenger`` so that the classifier can match on type instead of
probing response shapes.
"""

from __future__ import annotations

from typing import Any


class LineMessagingError(Exception):
    """Base class for every error raised by the messaging package."""


class ValidationError(LineMessagingError):
    """Raised when input fails validation before any network call."""


class TemplateNotFoundError(ValidationError):
    """Raised when a template name is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Template not found: {name}")


class ApiError(LineMessagingError):
    """Non-2xx response from the LINE Messaging API."""

    def __init__(
        self,
        status_code: int,
        body: Any = None,
        request_id: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.request_id = request_id
        super().__init__(f"LINE API error: status={status_code}")

    @property
    def line_message(self) -> str | None:
        if isinstance(self.body, dict):
            message = self.body.get("message")
            return str(message) if message is not None else None
        return None

    @property
    def line_details(self) -> list[Any]:
        if isinstance(self.body, dict) and isinstance(self.body.get("details"), list):
            return self.body["details"]
        return []


class NetworkError(LineMessagingError):
    """Connection-level failure (refused, reset, timed out)."""

    def __init__(self, message: str, code: str = "ECONNRESET") -> None:
        self.code = code
        super().__init__(message)


class AuthenticationError(LineMessagingError):
    """The channel access token was rejected (HTTP 401)."""

    def __init__(self, message: str = "unauthorized", body: Any = None) -> None:
        self.status_code = 401
        self.body = body
        super().__init__(message)


class ConfigurationError(LineMessagingError):
    """Channel access token or channel secret is not configured."""
