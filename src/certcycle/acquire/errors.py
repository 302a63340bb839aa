"""Errors raised while acquiring certificates."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from certcycle.core.types import ChallengeType


class AcquisitionError(Exception):
    """Base for acquisition failures.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether a later attempt may succeed.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:  # noqa: FBT001, FBT002
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class CryptoFailure(AcquisitionError):
    """Key or certificate generation failed locally.  Fatal."""


class AuthorityError(AcquisitionError):
    """The ACME authority rejected, failed, or timed out."""


class AllChallengesFailed(AcquisitionError):
    """Every enabled challenge method failed.

    Attributes
    ----------
    failures:
        Reason per challenge type, in the order they were tried.

    """

    def __init__(self, failures: Mapping[ChallengeType, str]) -> None:
        self.failures = dict(failures)
        if self.failures:
            parts = "; ".join(f"{ct.value}: {reason}" for ct, reason in self.failures.items())
            detail = f"All challenge methods failed ({parts})"
        else:
            detail = "No challenge method is enabled"
        super().__init__(detail, retryable=True)

    def failure_map(self) -> dict[str, str]:
        return {ct.value: reason for ct, reason in self.failures.items()}
