"""Shared Pydantic data models for the NexusTrade LINE messaging service."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class ErrorType(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AuditEventType(str, Enum):
    MESSAGE_SENT = "message_sent"
    MESSAGE_FAILED = "message_failed"
    BATCH_SENT = "batch_sent"
    SIGNATURE_REJECTED = "signature_rejected"
    WEBHOOK_ACCEPTED = "webhook_accepted"
    WEBHOOK_REJECTED = "webhook_rejected"
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Outbound messages ---


class TextMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str

    def to_line(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


class FlexMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["flex"] = "flex"
    contents: dict[str, Any]
    alt_text: str = Field(max_length=400)

    def to_line(self) -> dict[str, Any]:
        return {"type": "flex", "altText": self.alt_text, "contents": self.contents}


OutboundMessage = Annotated[TextMessage | FlexMessage, Field(discriminator="kind")]


# --- Results ---


class ErrorInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ErrorType
    code: str
    message: str
    friendly_message: str
    is_retryable: bool
    suggested_action: str
    operation: str = "unknown"
    timestamp: str = Field(default_factory=_now_iso)
    details: dict[str, Any] = Field(default_factory=dict)


class SendResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message_id: str | None = None
    timestamp: str = Field(default_factory=_now_iso)
    recipient: str | None = None  # masked
    message_type: str | None = None
    error: ErrorInfo | None = None


class BatchError(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    recipient: str  # masked
    error: ErrorInfo


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    total_users: int = Field(ge=0)
    successful: int = Field(ge=0)
    failed: int = Field(ge=0)
    total_batches: int = Field(ge=0)
    results: list[SendResult]
    errors: list[BatchError]
    timestamp: str = Field(default_factory=_now_iso)
    error: ErrorInfo | None = None


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    recipient: str | None = None  # masked
    action: str
    result: str  # "success" | "failure" | "rejected"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
