"""Identifier masking for logs and results."""

from __future__ import annotations


def mask_id(value: str | None) -> str:
    """Keep the first and last four characters of an id: ``Uabc***wxyz``."""
    if not value or not isinstance(value, str) or len(value) < 8:
        return "unknown"
    return f"{value[:4]}***{value[-4:]}"


def truncate_id(value: str | None, length: int = 8) -> str:
    """Short prefix form used in webhook log lines."""
    if not value:
        return "unknown"
    return f"{value[:length]}..."
