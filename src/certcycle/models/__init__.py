"""Entity models for certcycle.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from certcycle.models.certificate import CertificateBundle, CertificateRecord
from certcycle.models.journal import FailureInfo, LifecycleJournal

__all__ = [
    "CertificateBundle",
    "CertificateRecord",
    "FailureInfo",
    "LifecycleJournal",
]
