"""Delivery audit trail: append-only JSON Lines with rotation and a SHA-256 hash chain.

Every outbound send, batch, rejected webhook and internal API authentication
attempt is recorded. Each line carries ``prev_hash``, the SHA-256 of the
previous line, so truncation or tampering breaks the chain.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.models import AuditEvent, AuditEventType, RiskLevel

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10_485_760
DEFAULT_BACKUP_COUNT = 5

EVENT_RISK = {
    AuditEventType.MESSAGE_SENT: RiskLevel.INFO,
    AuditEventType.BATCH_SENT: RiskLevel.INFO,
    AuditEventType.WEBHOOK_ACCEPTED: RiskLevel.INFO,
    AuditEventType.AUTH_SUCCESS: RiskLevel.INFO,
    AuditEventType.MESSAGE_FAILED: RiskLevel.LOW,
    AuditEventType.WEBHOOK_REJECTED: RiskLevel.MEDIUM,
    AuditEventType.SIGNATURE_REJECTED: RiskLevel.HIGH,
    AuditEventType.AUTH_FAILURE: RiskLevel.HIGH,
}


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None
    entries: int = 0


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Walk the log and check that every ``prev_hash`` links to its predecessor."""
    if not log_path.exists():
        return ChainValidationResult(valid=True)
    lines = [line for line in log_path.read_text().split("\n") if line]

    previous: str | None = None
    for number, line in enumerate(lines, start=1):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return ChainValidationResult(valid=False, broken_at_line=number, entries=len(lines))
        expected = None if previous is None else _line_hash(previous)
        if entry.get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=number, entries=len(lines))
        previous = line

    return ChainValidationResult(valid=True, entries=len(lines))


class AuditLogger:
    """Append-only audit log for message delivery and webhook security events."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._tail: str | None = self._read_tail()

    def _read_tail(self) -> str | None:
        if not self.log_path.exists() or self.log_path.stat().st_size == 0:
            return None
        lines = [line for line in self.log_path.read_text().split("\n") if line]
        return lines[-1] if lines else None

    @classmethod
    def from_env(cls, log_path: str | None = None) -> AuditLogger | None:
        """Build from ``AUDIT_LOG_PATH`` and rotation settings; ``None`` when unset."""
        path = log_path or os.environ.get("AUDIT_LOG_PATH")
        if not path:
            return None
        return cls(
            log_path=path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", str(DEFAULT_MAX_BYTES))),
            backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", str(DEFAULT_BACKUP_COUNT))),
        )

    def _backup(self, generation: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{generation}")

    def _rotate_if_needed(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return
        self._backup(self._backup_count).unlink(missing_ok=True)
        for generation in range(self._backup_count - 1, 0, -1):
            if self._backup(generation).exists():
                self._backup(generation).rename(self._backup(generation + 1))
        self.log_path.rename(self._backup(1))
        logger.info("Rotated audit log %s", self.log_path)

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        entry = event.model_dump(mode="json")
        entry["prev_hash"] = None if self._tail is None else _line_hash(self._tail)
        line = json.dumps(entry, separators=(",", ":"), ensure_ascii=False)

        lock_path = self.log_path.with_name(f".{self.log_path.name}.lock")
        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                self._rotate_if_needed()
                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

        self._tail = line

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        result: str,
        *,
        recipient: str | None = None,
        source_ip: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Shorthand for ``log``; risk level follows from the event type.

        Audit failures are logged and never interrupt message delivery.
        """
        event = AuditEvent(
            event_type=event_type,
            action=action,
            result=result,
            recipient=recipient,
            source_ip=source_ip,
            risk_level=EVENT_RISK[event_type],
            details=details,
        )
        try:
            self.log(event)
        except OSError:
            logger.exception("Failed to write audit event %s", event_type.value)
