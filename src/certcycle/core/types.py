"""Enumerated types shared across certcycle.

All enums inherit from ``StrEnum`` so their ``.value`` is a plain
string that round-trips through JSON metadata, the ``cert_type``
marker file, and configuration values unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class CertificateType(StrEnum):
    SELF_SIGNED = "self-signed"
    LETS_ENCRYPT = "letsencrypt"


# ---------------------------------------------------------------------------
# Challenge types
# ---------------------------------------------------------------------------


class ChallengeType(StrEnum):
    HTTP_01 = "http-01"
    DNS_01 = "dns-01"


class Readiness(StrEnum):
    READY = "ready"
    TIMED_OUT = "timed-out"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class LifecycleState(StrEnum):
    NO_CERTIFICATE = "no-certificate"
    SELF_SIGNED_ACTIVE = "self-signed-active"
    LETS_ENCRYPT_ACTIVE = "letsencrypt-active"
    LETS_ENCRYPT_EXPIRING_SOON = "letsencrypt-expiring-soon"
    LETS_ENCRYPT_EXPIRED = "letsencrypt-expired"


class CheckOutcome(StrEnum):
    SKIPPED = "skipped"
    NOOP = "noop"
    SETUP = "setup"
    UPGRADED = "upgraded"
    UPGRADE_FAILED = "upgrade-failed"
    RENEWED = "renewed"
    RENEWAL_FAILED = "renewal-failed"
    FELL_BACK = "fell-back"
    PREFERRED_LETS_ENCRYPT = "preferred-letsencrypt"
