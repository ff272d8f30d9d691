"""Tests for shared number formatting and the direction convention."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from src.templates.formatting import (
    COLORS,
    PLACEHOLDER,
    Direction,
    direction_color,
    direction_of,
    format_number,
    format_percent,
    format_price,
    format_timestamp,
    marker,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (8.33, "+8.33%"),
        ("8.333", "+8.33%"),
        (-1.2, "-1.20%"),
        (0, "0.00%"),
        (-0.001, "0.00%"),
        (None, PLACEHOLDER),
        ("n/a", "n/a"),
    ],
)
def test_format_percent(value: object, expected: str) -> None:
    assert format_percent(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (60000, "60,000.00"),
        ("102000.5", "102,000.50"),
        ("1,234.5", "1,234.50"),
        (1, "1.00"),
        (0.5, "0.50"),
        ("0.00001234", "0.00001234"),
        (None, PLACEHOLDER),
        ("2.5T", "2.5T"),
    ],
)
def test_format_price(value: object, expected: str) -> None:
    assert format_price(value) == expected


def test_format_number() -> None:
    assert format_number(65) == "65"
    assert format_number("1234567") == "1,234,567"
    assert format_number(42.5) == "42.50"
    assert format_number(None) == PLACEHOLDER


class TestDirection:
    def test_tri_state(self) -> None:
        assert direction_of(2.5) == Direction.UP
        assert direction_of("-0.5") == Direction.DOWN
        assert direction_of(0) == Direction.FLAT
        assert direction_of(None) == Direction.FLAT

    def test_marker_and_color_agree(self) -> None:
        assert (marker(1), direction_color(1)) == ("📈", COLORS["success"])
        assert (marker(-1), direction_color(-1)) == ("📉", COLORS["error"])
        assert (marker(0), direction_color(0)) == ("➖", COLORS["text_muted"])


def test_format_timestamp_prefers_data_value() -> None:
    now = datetime(2025, 1, 15, 9, 30, tzinfo=UTC)
    assert format_timestamp(None, now) == "2025-01-15 09:30:00"
    assert format_timestamp("2025-01-01 00:00", now) == "2025-01-01 00:00"


class TestHugeValues:
    def test_percent_keeps_every_integer_digit(self) -> None:
        assert format_percent(1e30) == "+1000000000000000000000000000000.00%"
        assert format_percent("-1e30") == "-1000000000000000000000000000000.00%"

    def test_price_and_number_group_large_values(self) -> None:
        grouped = "1,000,000,000,000,000,000,000,000,000,000"
        assert format_price(1e30) == f"{grouped}.00"
        assert format_number(10**30) == grouped

    def test_beyond_plain_range_switches_to_scientific(self) -> None:
        assert format_price(1e50) == "1.00E+50"
        assert format_number("1e60") == "1.00E+60"
        assert format_percent(1e50) == "+1.00E+50%"
