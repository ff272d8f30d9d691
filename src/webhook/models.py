"""Data models for inbound LINE webhook events."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MAX_EVENTS_PER_REQUEST = 100
REQUIRED_EVENT_FIELDS = ("type", "timestamp", "source")


class WebhookFormatError(ValueError):
    """The request body is not a well-formed webhook batch."""


class EventType(str, Enum):
    MESSAGE = "message"
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"
    POSTBACK = "postback"
    JOIN = "join"
    LEAVE = "leave"
    MEMBER_JOINED = "memberJoined"
    MEMBER_LEFT = "memberLeft"


class EventSource(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = "user"
    user_id: str | None = Field(default=None, alias="userId")
    group_id: str | None = Field(default=None, alias="groupId")
    room_id: str | None = Field(default=None, alias="roomId")


class WebhookEvent(BaseModel):
    """One event of a webhook batch. ``type`` stays a raw string so unknown
    event types survive parsing and are reported as unhandled."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str
    timestamp: int
    source: EventSource
    reply_token: str | None = Field(default=None, alias="replyToken")
    message: dict[str, Any] | None = None
    postback: dict[str, Any] | None = None
    webhook_event_id: str | None = Field(default=None, alias="webhookEventId")

    @property
    def event_type(self) -> EventType | None:
        try:
            return EventType(self.type)
        except ValueError:
            return None

    @property
    def user_id(self) -> str | None:
        return self.source.user_id


def parse_events(payload: Any) -> list[WebhookEvent]:
    """Validate the whole batch, then build events.

    Any malformed element rejects the entire batch, so nothing is
    dispatched from a partially valid request.
    """
    if not isinstance(payload, Mapping):
        raise WebhookFormatError("Webhook body must be a JSON object")
    events = payload.get("events")
    if not isinstance(events, list):
        raise WebhookFormatError("Webhook body must contain an events list")
    if len(events) > MAX_EVENTS_PER_REQUEST:
        raise WebhookFormatError(
            f"Too many events: {len(events)} (max {MAX_EVENTS_PER_REQUEST})",
        )

    for index, event in enumerate(events):
        if not isinstance(event, Mapping):
            raise WebhookFormatError(f"Event {index} is not an object")
        missing = [name for name in REQUIRED_EVENT_FIELDS if not event.get(name)]
        if missing:
            raise WebhookFormatError(f"Event {index} is missing {', '.join(missing)}")
        if not isinstance(event["source"], Mapping):
            raise WebhookFormatError(f"Event {index} source is not an object")

    try:
        return [WebhookEvent.model_validate(event) for event in events]
    except ValueError as exc:
        raise WebhookFormatError(f"Malformed event: {exc}") from exc
