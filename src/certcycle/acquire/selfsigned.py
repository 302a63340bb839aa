"""Self-signed certificate generation.

Produces the fallback certificate that keeps HTTPS up whenever no
valid Let's Encrypt certificate is available.  Entirely local: no
network access.
"""

from __future__ import annotations

import ipaddress
import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from certcycle.acquire.errors import CryptoFailure
from certcycle.acquire.keys import generate_private_key, private_key_pem, unique_names
from certcycle.core.clock import utcnow
from certcycle.core.types import CertificateType
from certcycle.models.certificate import CertificateBundle

if TYPE_CHECKING:
    from collections.abc import Sequence

    from certcycle.config.settings import SelfSignedSettings
    from certcycle.core.clock import Clock

log = logging.getLogger(__name__)

_LOCAL_NAMES = ("localhost", "127.0.0.1")

# Backdated so clients with a slightly slow clock accept it immediately.
_CLOCK_SKEW = timedelta(minutes=5)


def _general_name(name: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(name))
    except ValueError:
        return x509.DNSName(name)


def build_self_signed(
    domain: str,
    alternative_names: Sequence[str],
    settings: SelfSignedSettings,
    *,
    clock: Clock | None = None,
) -> CertificateBundle:
    """Generate a fresh key and a self-signed certificate for *domain*.

    Parameters
    ----------
    domain:
        Subject CN and first SAN entry.
    alternative_names:
        Additional SAN entries.
    settings:
        Key algorithm, size/curve, validity, and whether to add the
        loopback names.
    clock:
        Source of "now" for the validity window.

    Returns
    -------
    CertificateBundle
        Bundle of type ``self-signed`` with no source challenge.

    Raises
    ------
    CryptoFailure
        If key generation or signing fails.

    """
    now = (clock or utcnow)()
    extra = list(alternative_names)
    if settings.include_localhost:
        extra.extend(_LOCAL_NAMES)
    names = unique_names(domain, extra)

    try:
        key = generate_private_key(
            settings.key_type,
            key_size=settings.key_size,
            ec_curve=settings.ec_curve,
        )
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
        is_ec = isinstance(key, ec.EllipticCurvePrivateKey)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - _CLOCK_SKEW)
            .not_valid_after(now + timedelta(days=settings.validity_days))
            .add_extension(
                x509.SubjectAlternativeName([_general_name(n) for n in names]),
                critical=False,
            )
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=not is_ec,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                critical=False,
            )
        )
        cert = builder.sign(key, hashes.SHA256())
        cert_pem = cert.public_bytes(Encoding.PEM).decode("ascii")
        bundle = CertificateBundle.from_pem(
            certificate_type=CertificateType.SELF_SIGNED,
            cert_pem=cert_pem,
            key_pem=private_key_pem(key),
            domain=domain,
            alternative_names=names[1:],
        )
    except (ValueError, TypeError) as exc:
        msg = f"Self-signed certificate generation failed: {exc}"
        raise CryptoFailure(msg) from exc

    log.info(
        "Generated self-signed certificate for %s (%s, valid until %s)",
        domain,
        settings.key_type,
        bundle.not_after.isoformat(),
    )
    return bundle

