"""Certificate acquisition: self-signed generation and ACME issuance."""

from certcycle.acquire.acquirer import CertificateAcquirer, ProviderResponder
from certcycle.acquire.authority import AcmeAuthority, AcmeowAuthority, ChallengeResponder
from certcycle.acquire.errors import (
    AcquisitionError,
    AllChallengesFailed,
    AuthorityError,
    CryptoFailure,
)

__all__ = [
    "AcmeAuthority",
    "AcmeowAuthority",
    "AcquisitionError",
    "AllChallengesFailed",
    "AuthorityError",
    "CertificateAcquirer",
    "ChallengeResponder",
    "CryptoFailure",
    "ProviderResponder",
]
