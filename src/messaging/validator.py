"""Input validation for outbound LINE messages.

All functions are pure and raise ``ValidationError`` before any network
call is attempted.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from src.messaging.errors import ValidationError
from src.messaging.flex_validator import validate_flex_structure
from src.models import FlexMessage, TextMessage

RECIPIENT_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
TEMPLATE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

MIN_RECIPIENT_LENGTH = 10
MAX_RECIPIENT_LENGTH = 100
MAX_TEXT_LENGTH = 5000
MAX_ALT_TEXT_LENGTH = 400
MAX_BATCH_USERS = 500
MAX_TEMPLATE_NAME_LENGTH = 50
MAX_QUICK_REPLY_ITEMS = 13
FLEX_CONTAINER_TYPES = frozenset({"bubble", "carousel"})


def validate_recipient(recipient: Any) -> None:
    if recipient is None or recipient == "":
        raise ValidationError("Recipient id must not be empty")
    if not isinstance(recipient, str):
        raise ValidationError("Recipient id must be a string")
    if not MIN_RECIPIENT_LENGTH <= len(recipient) <= MAX_RECIPIENT_LENGTH:
        raise ValidationError(
            f"Recipient id length must be between {MIN_RECIPIENT_LENGTH} "
            f"and {MAX_RECIPIENT_LENGTH} characters",
        )
    if not RECIPIENT_PATTERN.match(recipient):
        raise ValidationError(
            "Recipient id format is invalid: only letters, digits, '_' and '-' are allowed",
        )


def validate_recipients(recipients: Any, *, check_each: bool = True) -> None:
    """Validate a batch recipient list.

    With ``check_each=False`` only list-level rules (type, size, duplicates)
    are enforced, leaving per-recipient checks to the send path so that one
    bad id does not sink the whole batch.
    """
    if isinstance(recipients, (str, bytes)) or not isinstance(recipients, Sequence):
        raise ValidationError("Recipient ids must be a list")
    if len(recipients) == 0:
        raise ValidationError("Recipient list must not be empty")
    if len(recipients) > MAX_BATCH_USERS:
        raise ValidationError(f"Recipient count must not exceed {MAX_BATCH_USERS}")

    seen: set[Any] = set()
    for recipient in recipients:
        if check_each:
            validate_recipient(recipient)
        try:
            duplicate = recipient in seen
        except TypeError:
            raise ValidationError("Recipient id must be a string") from None
        if duplicate:
            raise ValidationError(f"Duplicate recipient id: {recipient}")
        seen.add(recipient)


def validate_text(text: Any) -> None:
    if not isinstance(text, str):
        raise ValidationError("Text message must be a string")
    if len(text) == 0:
        raise ValidationError("Text message must not be empty")
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(f"Text message length must not exceed {MAX_TEXT_LENGTH} characters")
    if CONTROL_CHARS.search(text):
        raise ValidationError("Text message contains disallowed control characters")


def _validate_alt_text(alt_text: Any) -> None:
    if not isinstance(alt_text, str):
        raise ValidationError("altText must be a string")
    if len(alt_text) > MAX_ALT_TEXT_LENGTH:
        raise ValidationError(f"altText length must not exceed {MAX_ALT_TEXT_LENGTH} characters")


def _ensure_serializable(value: Any, what: str) -> None:
    try:
        json.dumps(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{what} cannot be serialized: {exc}") from exc


def validate_flex_contents(contents: Any) -> None:
    if not isinstance(contents, Mapping):
        raise ValidationError("Flex message must be an object")
    container_type = contents.get("type")
    if not container_type:
        raise ValidationError("Flex message must include a type")
    if container_type not in FLEX_CONTAINER_TYPES:
        raise ValidationError(f"Unsupported flex container type: {container_type}")
    if "altText" in contents and contents["altText"] is not None:
        _validate_alt_text(contents["altText"])
    _ensure_serializable(contents, "Flex message")
    validate_flex_structure(contents)


def validate_message(message: Any) -> None:
    if message is None or message == "" or message == {}:
        raise ValidationError("Message must not be empty")
    if isinstance(message, TextMessage):
        validate_text(message.text)
    elif isinstance(message, FlexMessage):
        _validate_alt_text(message.alt_text)
        validate_flex_contents(message.contents)
    elif isinstance(message, str):
        validate_text(message)
    elif isinstance(message, Mapping):
        validate_flex_contents(message)
    else:
        raise ValidationError("Message must be a string or a flex object")


def validate_template_name(name: Any) -> None:
    if not name:
        raise ValidationError("Template name must not be empty")
    if not isinstance(name, str):
        raise ValidationError("Template name must be a string")
    if len(name) > MAX_TEMPLATE_NAME_LENGTH:
        raise ValidationError(
            f"Template name length must not exceed {MAX_TEMPLATE_NAME_LENGTH} characters",
        )
    if not TEMPLATE_NAME_PATTERN.match(name):
        raise ValidationError(
            "Template name format is invalid: only letters, digits, '_' and '-' are allowed",
        )


def validate_template_data(data: Any) -> None:
    if not isinstance(data, Mapping):
        raise ValidationError("Template data must be an object")
    _ensure_serializable(dict(data), "Template data")


def validate_quick_reply(quick_reply: Any) -> None:
    if not isinstance(quick_reply, Mapping):
        raise ValidationError("Quick reply must be an object")
    items = quick_reply.get("items")
    if not isinstance(items, list):
        raise ValidationError("Quick reply must include an items list")
    if not 1 <= len(items) <= MAX_QUICK_REPLY_ITEMS:
        raise ValidationError(
            f"Quick reply items count must be between 1 and {MAX_QUICK_REPLY_ITEMS}",
        )
    for item in items:
        if not isinstance(item, Mapping) or not item.get("type") or not item.get("action"):
            raise ValidationError("Each quick reply item must include type and action")


def validate_send_options(options: Any) -> None:
    if not isinstance(options, Mapping):
        raise ValidationError("Options must be an object")
    if options.get("alt_text") is not None:
        _validate_alt_text(options["alt_text"])
    if options.get("quick_reply") is not None:
        validate_quick_reply(options["quick_reply"])


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_batch_options(options: Any) -> None:
    validate_send_options(options)
    batch_size = options.get("batch_size")
    if batch_size is not None and (
        not _is_int(batch_size) or not 1 <= batch_size <= MAX_BATCH_USERS
    ):
        raise ValidationError(f"Batch size must be an integer between 1 and {MAX_BATCH_USERS}")
    batch_delay = options.get("batch_delay")
    if batch_delay is not None and batch_delay is not False and (
        not _is_int(batch_delay) or batch_delay < 0
    ):
        raise ValidationError("Batch delay must be a non-negative integer (milliseconds)")


def validate_send_input(recipient: Any, message: Any, options: Any) -> None:
    validate_recipient(recipient)
    validate_message(message)
    validate_send_options(options)


def validate_batch_input(recipients: Any, message: Any, options: Any) -> None:
    validate_recipients(recipients, check_each=False)
    validate_message(message)
    validate_batch_options(options)


def validate_template_input(recipient: Any, name: Any, data: Any, options: Any) -> None:
    validate_recipient(recipient)
    validate_template_name(name)
    validate_template_data(data)
    validate_send_options(options)
