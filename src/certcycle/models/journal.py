"""Operator-visible lifecycle journal.

Persisted by the store next to the certificates so ``certcycle status``
can report the last check, the last successful Let's Encrypt issuance,
and the reason for the most recent failure without reading logs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _fmt_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class FailureInfo:
    at: datetime
    operation: str
    reason: str
    details: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "at": self.at.isoformat(),
            "operation": self.operation,
            "reason": self.reason,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailureInfo:
        return cls(
            at=datetime.fromisoformat(data["at"]),
            operation=data.get("operation", ""),
            reason=data.get("reason", ""),
            details=dict(data.get("details") or {}),
        )


@dataclass(frozen=True)
class LifecycleJournal:
    last_check_at: datetime | None = None
    last_outcome: str | None = None
    last_success_at: datetime | None = None
    last_failure: FailureInfo | None = None
    last_reload_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_check_at": _fmt_dt(self.last_check_at),
            "last_outcome": self.last_outcome,
            "last_success_at": _fmt_dt(self.last_success_at),
            "last_failure": self.last_failure.to_dict() if self.last_failure else None,
            "last_reload_error": self.last_reload_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LifecycleJournal:
        d = data or {}
        failure = d.get("last_failure")
        return cls(
            last_check_at=_parse_dt(d.get("last_check_at")),
            last_outcome=d.get("last_outcome"),
            last_success_at=_parse_dt(d.get("last_success_at")),
            last_failure=FailureInfo.from_dict(failure) if failure else None,
            last_reload_error=d.get("last_reload_error"),
        )
