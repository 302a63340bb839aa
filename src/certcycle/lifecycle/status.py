"""Operator-facing status report."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from datetime import datetime

    from certcycle.core.types import CertificateType, LifecycleState
    from certcycle.models.certificate import CertificateRecord
    from certcycle.models.journal import FailureInfo


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class CandidateSummary:
    certificate_type: CertificateType
    version: str
    not_after: datetime
    days_remaining: int
    valid: bool
    active: bool

    @classmethod
    def from_record(
        cls,
        record: CertificateRecord,
        now: datetime,
        *,
        active: bool,
    ) -> CandidateSummary:
        return cls(
            certificate_type=record.certificate_type,
            version=record.version,
            not_after=record.not_after,
            days_remaining=record.days_remaining(now),
            valid=record.is_valid(now),
            active=active,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "certificate_type": self.certificate_type.value,
            "version": self.version,
            "not_after": self.not_after.isoformat(),
            "days_remaining": self.days_remaining,
            "valid": self.valid,
            "active": self.active,
        }


@dataclass(frozen=True)
class StatusReport:
    """Everything ``certcycle status`` shows, without reading logs."""

    state: LifecycleState
    active_type: CertificateType | None
    domain: str | None
    alternative_names: tuple[str, ...]
    not_after: datetime | None
    days_remaining: int | None
    source_challenge: str | None
    last_check_at: datetime | None
    last_outcome: str | None
    last_success_at: datetime | None
    last_failure: FailureInfo | None
    last_reload_error: str | None
    candidates: tuple[CandidateSummary, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "active_type": self.active_type.value if self.active_type else None,
            "domain": self.domain,
            "alternative_names": list(self.alternative_names),
            "not_after": _iso(self.not_after),
            "days_remaining": self.days_remaining,
            "source_challenge": self.source_challenge,
            "last_check_at": _iso(self.last_check_at),
            "last_outcome": self.last_outcome,
            "last_success_at": _iso(self.last_success_at),
            "last_failure": self.last_failure.to_dict() if self.last_failure else None,
            "last_reload_error": self.last_reload_error,
            "candidates": [c.to_dict() for c in self.candidates],
        }

    def render_text(self) -> str:
        lines = [f"State:            {self.state.value}"]
        if self.active_type is not None:
            names = ", ".join((self.domain or "", *self.alternative_names))
            lines.append(f"Active type:      {self.active_type.value}")
            lines.append(f"Names:            {names}")
            lines.append(f"Expires:          {_iso(self.not_after)} ({self.days_remaining} days)")
            if self.source_challenge:
                lines.append(f"Challenge:        {self.source_challenge}")
        lines.append(f"Last check:       {_iso(self.last_check_at) or 'never'}")
        if self.last_outcome:
            lines.append(f"Last outcome:     {self.last_outcome}")
        lines.append(f"Last LE success:  {_iso(self.last_success_at) or 'never'}")
        if self.last_failure is not None:
            failure = self.last_failure
            lines.append(
                f"Last failure:     {failure.operation} at {failure.at.isoformat()}: "
                f"{failure.reason}",
            )
            for method, reason in failure.details.items():
                lines.append(f"  {method}: {reason}")
        if self.last_reload_error:
            lines.append(f"Reload error:     {self.last_reload_error}")
        for cand in self.candidates:
            marker = "*" if cand.active else " "
            validity = "valid" if cand.valid else "EXPIRED"
            lines.append(
                f"{marker} {cand.certificate_type.value:<12} {cand.version}  "
                f"{cand.not_after.isoformat()}  {validity}",
            )
        return "\n".join(lines)
