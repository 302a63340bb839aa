"""Challenge providers for Let's Encrypt domain validation.

Exports the abstract base class, the structured error types, the
handle type, and the registry.
"""

from certcycle.challenge.base import (
    ChallengeError,
    ChallengeHandle,
    ChallengeProvider,
    CredentialsMissing,
    DomainUnreachable,
    PropagationTimeout,
)
from certcycle.challenge.registry import ProviderRegistry

__all__ = [
    "ChallengeError",
    "ChallengeHandle",
    "ChallengeProvider",
    "CredentialsMissing",
    "DomainUnreachable",
    "PropagationTimeout",
    "ProviderRegistry",
]
