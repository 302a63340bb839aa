"""Certificate entities.

:class:`CertificateBundle` is the acquirer's output: PEM material plus
the metadata parsed from the leaf.  :class:`CertificateRecord` is what
the store hands back once the bundle has been written; it carries only
opaque references to the key and chain, never the material itself.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtensionOID, NameOID

from certcycle.core.types import CertificateType, ChallengeType

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class CertificateRecord:
    certificate_type: CertificateType
    domain: str
    alternative_names: tuple[str, ...]
    not_before: datetime
    not_after: datetime
    private_key_ref: str
    certificate_chain_ref: str
    source_challenge: ChallengeType | None
    serial_number: str
    fingerprint: str
    version: str

    def is_expired(self, now: datetime) -> bool:
        return self.not_after <= now

    def is_valid(self, now: datetime) -> bool:
        return self.not_before <= now < self.not_after

    def remaining(self, now: datetime) -> timedelta:
        return self.not_after - now

    def days_remaining(self, now: datetime) -> int:
        return self.remaining(now).days

    def is_expiring_soon(self, now: datetime, threshold_days: int) -> bool:
        """True when less than *threshold_days* of validity are left."""
        return self.remaining(now) < timedelta(days=threshold_days)

    @property
    def names(self) -> tuple[str, ...]:
        return (self.domain, *self.alternative_names)

    def to_dict(self) -> dict:
        return {
            "certificate_type": self.certificate_type.value,
            "domain": self.domain,
            "alternative_names": list(self.alternative_names),
            "not_before": self.not_before.isoformat(),
            "not_after": self.not_after.isoformat(),
            "source_challenge": (
                self.source_challenge.value if self.source_challenge else None
            ),
            "serial_number": self.serial_number,
            "fingerprint": self.fingerprint,
            "version": self.version,
        }


@dataclass(frozen=True)
class CertificateBundle:
    """Freshly acquired certificate material, not yet stored.

    Attributes
    ----------
    certificate_type:
        Which candidate slot this bundle fills.
    cert_pem:
        Full PEM chain, leaf first.
    key_pem:
        PEM-encoded private key matching the leaf.
    source_challenge:
        Challenge method that produced it, ``None`` for self-signed.

    """

    certificate_type: CertificateType
    cert_pem: str
    key_pem: str
    source_challenge: ChallengeType | None
    domain: str
    alternative_names: tuple[str, ...]
    not_before: datetime
    not_after: datetime
    serial_number: str
    fingerprint: str

    @classmethod
    def from_pem(
        cls,
        *,
        certificate_type: CertificateType,
        cert_pem: str,
        key_pem: str,
        source_challenge: ChallengeType | None = None,
        domain: str | None = None,
        alternative_names: Sequence[str] | None = None,
    ) -> CertificateBundle:
        """Parse the leaf of *cert_pem* and build a bundle.

        *domain* and *alternative_names* default to the subject CN and
        the remaining SAN DNS names of the leaf.
        """
        leaf = x509.load_pem_x509_certificate(cert_pem.encode())
        san_names = _san_names(leaf)

        if domain is None:
            cn = leaf.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
            domain = str(cn[0].value) if cn else (san_names[0] if san_names else "")
        if alternative_names is None:
            alternative_names = [n for n in san_names if n != domain]

        return cls(
            certificate_type=certificate_type,
            cert_pem=cert_pem,
            key_pem=key_pem,
            source_challenge=source_challenge,
            domain=domain,
            alternative_names=tuple(alternative_names),
            not_before=leaf.not_valid_before_utc,
            not_after=leaf.not_valid_after_utc,
            serial_number=format(leaf.serial_number, "x"),
            fingerprint=hashlib.sha256(leaf.public_bytes(Encoding.DER)).hexdigest(),
        )


def _san_names(cert: x509.Certificate) -> list[str]:
    """Return DNS and IP SAN values of *cert* in certificate order."""
    try:
        san = cert.extensions.get_extension_for_oid(
            ExtensionOID.SUBJECT_ALTERNATIVE_NAME,
        )
    except x509.ExtensionNotFound:
        return []
    names: list[str] = []
    for name in san.value:  # type: ignore[attr-defined]
        if isinstance(name, x509.DNSName):
            names.append(name.value)
        elif isinstance(name, x509.IPAddress):
            names.append(str(name.value))
    return names
