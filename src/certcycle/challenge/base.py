"""Abstract base class for challenge providers.

A provider publishes the response the ACME authority looks for
(a webroot file, a DNS TXT record), reports when it is visible, and
removes it afterwards.  Verification itself is the authority's job.

All providers must inherit from :class:`ChallengeProvider` and
implement :meth:`prepare`, :meth:`await_ready`, and :meth:`cleanup`.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from certcycle.core.types import ChallengeType, Readiness

log = logging.getLogger(__name__)


class ChallengeError(Exception):
    """Raised by providers when a challenge cannot be satisfied.

    Every challenge failure is recoverable at the lifecycle level: the
    acquirer moves on to the next method.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether the failure is transient and the challenge may be retried.

    """

    def __init__(self, detail: str, *, retryable: bool = False) -> None:  # noqa: FBT001, FBT002
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class DomainUnreachable(ChallengeError):
    """The domain does not serve the challenge response from this host."""


class CredentialsMissing(ChallengeError):
    """No DNS API credentials are configured."""


class PropagationTimeout(ChallengeError):
    """The challenge response did not become visible within the wait budget."""


@dataclass(frozen=True)
class ChallengeHandle:
    """What a provider published, so it can be checked and removed later.

    ``location`` is provider specific: the token file path for
    HTTP-01, the TXT record name for DNS-01.
    """

    challenge_type: ChallengeType
    domain: str
    token: str
    value: str
    location: str


class ChallengeProvider(abc.ABC):
    """Base class for all challenge providers.

    Subclasses must set :attr:`challenge_type` as a class attribute.

    Parameters
    ----------
    settings:
        Per-type settings (``Http01Settings`` or ``Dns01Settings``).

    """

    challenge_type: ClassVar[ChallengeType]
    """The ACME challenge type this provider answers."""

    def __init__(self, settings: object = None) -> None:
        self.settings = settings

    @property
    def max_wait(self) -> float:
        """Upper bound in seconds that :meth:`await_ready` may block."""
        return 0.0

    def check_preconditions(self) -> None:
        """Raise before any external call if the provider cannot work at all.

        Default implementation is a no-op.
        """

    @abc.abstractmethod
    def prepare(self, domain: str, *, token: str, value: str) -> ChallengeHandle:
        """Publish *value* so the authority can observe it for *domain*.

        Must raise :class:`ChallengeError` (or a subclass) on failure.
        """

    @abc.abstractmethod
    def await_ready(self, handle: ChallengeHandle, max_wait: float | None = None) -> Readiness:
        """Block until the published response is observable, or give up.

        Returns :attr:`Readiness.READY` or :attr:`Readiness.TIMED_OUT`;
        never waits longer than *max_wait* seconds.
        """

    @abc.abstractmethod
    def cleanup(self, handle: ChallengeHandle) -> None:
        """Remove whatever :meth:`prepare` published.

        Called on success and on failure.  Must not raise; problems are
        logged.
        """

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.challenge_type.value}>"
