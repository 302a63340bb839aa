"""Private key and CSR helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cryptography.hazmat.primitives.asymmetric.types import CertificateIssuerPrivateKeyTypes

_CURVES = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
}

_LE_RSA_KEY_SIZE = 2048


def generate_private_key(
    key_type: str,
    *,
    key_size: int = 4096,
    ec_curve: str = "P-384",
) -> CertificateIssuerPrivateKeyTypes:
    """Generate an RSA or EC private key.

    Raises
    ------
    ValueError
        On an unknown *key_type* or curve.

    """
    if key_type == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    if key_type == "ec":
        try:
            curve = _CURVES[ec_curve]
        except KeyError:
            msg = f"Unsupported EC curve '{ec_curve}'"
            raise ValueError(msg) from None
        return ec.generate_private_key(curve())
    msg = f"Unsupported key type '{key_type}'"
    raise ValueError(msg)


def generate_csr_key(key_type: str) -> CertificateIssuerPrivateKeyTypes:
    """Key for a Let's Encrypt order: EC P-256 or RSA 2048."""
    if key_type == "rsa":
        return generate_private_key("rsa", key_size=_LE_RSA_KEY_SIZE)
    return generate_private_key("ec", ec_curve="P-256")


def private_key_pem(key: CertificateIssuerPrivateKeyTypes) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def build_csr_der(
    key: CertificateIssuerPrivateKeyTypes,
    domain: str,
    alternative_names: Sequence[str] = (),
) -> bytes:
    """Build a DER CSR with CN *domain* and every name in the SAN."""
    names = unique_names(domain, alternative_names)
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(
            x509.Name(
                [x509.NameAttribute(NameOID.COMMON_NAME, domain)],
            ),
        )
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(n) for n in names]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.DER)


def unique_names(domain: str, alternative_names: Sequence[str] = ()) -> list[str]:
    """Return *domain* followed by *alternative_names*, without duplicates."""
    seen: dict[str, None] = {domain: None}
    for name in alternative_names:
        seen.setdefault(name, None)
    return list(seen)
