"""Abstract base class for certificate stores.

A store keeps at most one *candidate* per :class:`CertificateType` and a
single *active* pointer.  All mutation of the active pointer funnels
through :meth:`CertificateStore.activate`, which refuses missing or
expired candidates and returns the previously active type so callers
can roll back.

Concrete stores implement the storage primitives (``_write_candidate``,
``candidate``, ``_publish`` ...); the validation rules live here so
every backend enforces them identically.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from certcycle.core.clock import utcnow

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from certcycle.core.clock import Clock
    from certcycle.core.types import CertificateType
    from certcycle.models.certificate import CertificateBundle, CertificateRecord
    from certcycle.models.journal import LifecycleJournal

log = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised by stores on invalid material or misuse.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class CertificateNotFound(StoreError):
    """No candidate of the requested type exists."""


class CertificateExpired(StoreError):
    """The candidate of the requested type is past its ``not_after``."""


def verify_key_matches(cert_pem: str, key_pem: str) -> None:
    """Raise :class:`StoreError` unless *key_pem* belongs to the leaf of *cert_pem*."""
    try:
        leaf = x509.load_pem_x509_certificate(cert_pem.encode())
        key = serialization.load_pem_private_key(key_pem.encode(), password=None)
    except ValueError as exc:
        msg = f"Unreadable certificate material: {exc}"
        raise StoreError(msg) from exc

    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    leaf_pub = leaf.public_key().public_bytes(serialization.Encoding.DER, spki)
    key_pub = key.public_key().public_bytes(serialization.Encoding.DER, spki)
    if leaf_pub != key_pub:
        msg = "Private key does not match the certificate's public key"
        raise StoreError(msg)


class CertificateStore(abc.ABC):
    """Base class for all certificate stores.

    Parameters
    ----------
    clock:
        Callable returning the current aware UTC datetime.

    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or utcnow

    # -- public API ----------------------------------------------------------

    def put(self, bundle: CertificateBundle) -> CertificateRecord:
        """Store *bundle* as the candidate of its type.

        The previous candidate of the same type is archived, not
        modified.  The active pointer is never touched.
        """
        verify_key_matches(bundle.cert_pem, bundle.key_pem)
        record = self._write_candidate(bundle)
        log.info(
            "Stored %s candidate %s for %s (expires %s)",
            record.certificate_type.value,
            record.version,
            record.domain,
            record.not_after.isoformat(),
        )
        return record

    def activate(self, certificate_type: CertificateType) -> CertificateType | None:
        """Make the candidate of *certificate_type* the active certificate.

        Returns
        -------
        CertificateType | None
            The type that was active before, or ``None``.

        Raises
        ------
        CertificateNotFound
            If there is no candidate of that type.
        CertificateExpired
            If the candidate's ``not_after`` is not in the future.

        """
        candidate = self.candidate(certificate_type)
        if candidate is None:
            msg = f"No {certificate_type.value} candidate to activate"
            raise CertificateNotFound(msg)
        if candidate.is_expired(self._clock()):
            msg = (
                f"Refusing to activate expired {certificate_type.value} "
                f"certificate (not_after {candidate.not_after.isoformat()})"
            )
            raise CertificateExpired(msg)

        previous = self.current()
        self._publish(candidate)
        log.info(
            "Activated %s certificate %s",
            certificate_type.value,
            candidate.version,
        )
        return previous.certificate_type if previous is not None else None

    def is_expiring_soon(self, threshold_days: int) -> bool:
        """Whether the active certificate has less than *threshold_days* left."""
        active = self.current()
        if active is None:
            return False
        return active.is_expiring_soon(self._clock(), threshold_days)

    def now(self) -> datetime:
        """Return the store clock's current time."""
        return self._clock()

    @property
    def lock_path(self) -> Path | None:
        """File used to serialise lifecycle runs across processes, if any."""
        return None

    # -- backend primitives --------------------------------------------------

    @abc.abstractmethod
    def current(self) -> CertificateRecord | None:
        """Return the active record, or ``None`` when unset."""

    @abc.abstractmethod
    def candidate(self, certificate_type: CertificateType) -> CertificateRecord | None:
        """Return the current candidate of *certificate_type*, if any."""

    @abc.abstractmethod
    def history(self, certificate_type: CertificateType) -> list[CertificateRecord]:
        """Return all retained versions of *certificate_type*, newest first."""

    @abc.abstractmethod
    def prune(self, keep: int) -> int:
        """Delete archived versions beyond the newest *keep* per type.

        Candidates and the active version are never deleted.  Returns
        the number of versions removed.
        """

    @abc.abstractmethod
    def read_journal(self) -> LifecycleJournal:
        """Return the persisted lifecycle journal."""

    @abc.abstractmethod
    def write_journal(self, journal: LifecycleJournal) -> None:
        """Persist *journal*, replacing the previous one."""

    @abc.abstractmethod
    def _write_candidate(self, bundle: CertificateBundle) -> CertificateRecord:
        """Write *bundle* fully, then make it the candidate of its type."""

    @abc.abstractmethod
    def _publish(self, record: CertificateRecord) -> None:
        """Atomically repoint the active certificate at *record*."""
