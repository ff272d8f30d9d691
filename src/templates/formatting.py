"""Number formatting and the tri-state direction convention shared by all templates."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Any

# Context digits kept beyond the integer part while rounding
EXTRA_PRECISION = 12
# Integer digits above which numbers switch to scientific notation
MAX_PLAIN_DIGITS = 40

PLACEHOLDER = "calculating…"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Direction(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


COLORS = {
    "primary": "#1DB446",
    "success": "#4CAF50",
    "warning": "#FF9800",
    "error": "#F44336",
    "info": "#2196F3",
    "text": "#333333",
    "text_secondary": "#666666",
    "text_muted": "#999999",
    "white": "#FFFFFF",
}

DIRECTION_MARKERS = {
    Direction.UP: "📈",
    Direction.DOWN: "📉",
    Direction.FLAT: "➖",
}

DIRECTION_COLORS = {
    Direction.UP: COLORS["success"],
    Direction.DOWN: COLORS["error"],
    Direction.FLAT: COLORS["text_muted"],
}


def to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def _precision_for(number: Decimal) -> int:
    return max(28, number.adjusted() + EXTRA_PRECISION)


def _is_huge(number: Decimal) -> bool:
    return number.adjusted() >= MAX_PLAIN_DIGITS


def direction_of(value: Any) -> Direction:
    number = to_decimal(value)
    if number is None or number == 0:
        return Direction.FLAT
    return Direction.UP if number > 0 else Direction.DOWN


def marker(value: Any) -> str:
    return DIRECTION_MARKERS[direction_of(value)]


def direction_color(value: Any) -> str:
    return DIRECTION_COLORS[direction_of(value)]


def format_percent(value: Any) -> str:
    """Two decimals with an explicit sign: ``+8.33%``, ``-1.20%``, ``0.00%``."""
    number = to_decimal(value)
    if number is None:
        return PLACEHOLDER if value is None or value == "" else str(value)
    if _is_huge(number):
        return f"{'+' if number > 0 else ''}{number:.2E}%"
    with localcontext() as decimal_ctx:
        decimal_ctx.prec = _precision_for(number)
        rounded = number.quantize(Decimal("0.01"))
        if rounded == 0:
            return "0.00%"
        sign = "+" if rounded > 0 else ""
        return f"{sign}{rounded:.2f}%"


def format_price(value: Any) -> str:
    """Thousands separators; 2 decimals at or above 1, up to 8 below."""
    number = to_decimal(value)
    if number is None:
        return PLACEHOLDER if value is None or value == "" else str(value)
    if _is_huge(number):
        return f"{number:.2E}"
    with localcontext() as decimal_ctx:
        decimal_ctx.prec = _precision_for(number)
        if abs(number) >= 1:
            return f"{number:,.2f}"
        whole, _, fraction = f"{number:,.8f}".partition(".")
    return f"{whole}.{fraction.rstrip('0').ljust(2, '0')}"


def format_number(value: Any) -> str:
    number = to_decimal(value)
    if number is None:
        return PLACEHOLDER if value is None or value == "" else str(value)
    if _is_huge(number):
        return f"{number:.2E}"
    with localcontext() as decimal_ctx:
        decimal_ctx.prec = _precision_for(number)
        if number == number.to_integral_value():
            return f"{number:,.0f}"
        return f"{number:,.2f}"


def format_timestamp(value: Any, now: datetime) -> str:
    if value:
        return str(value)
    return now.strftime(TIMESTAMP_FORMAT)


def text_or_placeholder(value: Any) -> str:
    if value is None or value == "":
        return PLACEHOLDER
    return str(value)


def items_of(value: Any) -> list[Any]:
    """List-valued template fields; anything else counts as empty."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def records_of(value: Any) -> list[Mapping[str, Any]]:
    return [item for item in items_of(value) if isinstance(item, Mapping)]


def mapping_of(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}
