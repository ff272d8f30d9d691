"""Tests for the shared data models."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from src.models import (
    AuditEventType,
    BatchError,
    ErrorInfo,
    ErrorType,
    FlexMessage,
    OutboundMessage,
    SendResult,
    TextMessage,
)
from tests.conftest import make_audit_event

BUBBLE = {"type": "bubble", "body": {"type": "box", "layout": "vertical", "contents": []}}


def _error(**kwargs) -> ErrorInfo:
    defaults = {
        "type": ErrorType.API_ERROR,
        "code": "HTTP_500",
        "message": "Internal error",
        "friendly_message": "LINE is having trouble",
        "is_retryable": True,
        "suggested_action": "Retry later",
    }
    defaults.update(kwargs)
    return ErrorInfo(**defaults)


def test_text_message_wire_shape() -> None:
    assert TextMessage(text="hi").to_line() == {"type": "text", "text": "hi"}


def test_flex_message_wire_shape() -> None:
    message = FlexMessage(contents=BUBBLE, alt_text="Card")
    assert message.to_line() == {"type": "flex", "altText": "Card", "contents": BUBBLE}


def test_flex_alt_text_limit() -> None:
    FlexMessage(contents=BUBBLE, alt_text="x" * 400)
    with pytest.raises(ValidationError):
        FlexMessage(contents=BUBBLE, alt_text="x" * 401)


def test_outbound_message_discriminates_on_kind() -> None:
    adapter = TypeAdapter(OutboundMessage)
    assert isinstance(adapter.validate_python({"kind": "text", "text": "hi"}), TextMessage)
    flex = adapter.validate_python({"kind": "flex", "contents": BUBBLE, "alt_text": "Card"})
    assert isinstance(flex, FlexMessage)
    with pytest.raises(ValidationError):
        adapter.validate_python({"kind": "sticker"})


def test_messages_are_frozen() -> None:
    message = TextMessage(text="hi")
    with pytest.raises(ValidationError):
        message.text = "changed"  # type: ignore[misc]


def test_error_info_defaults() -> None:
    info = _error()
    assert info.operation == "unknown"
    assert info.details == {}
    assert "T" in info.timestamp


def test_send_result_serializes_error() -> None:
    result = SendResult(success=False, recipient="Uaaaaaaa...", error=_error())
    dumped = result.model_dump(mode="json")
    assert dumped["error"]["type"] == "API_ERROR"
    assert dumped["message_id"] is None


def test_batch_error_index_non_negative() -> None:
    with pytest.raises(ValidationError):
        BatchError(index=-1, recipient="U...", error=_error())


def test_audit_event_serializes_enums() -> None:
    dumped = make_audit_event(event_type=AuditEventType.SIGNATURE_REJECTED).model_dump(mode="json")
    assert dumped["event_type"] == "signature_rejected"
    assert dumped["risk_level"] == "info"
