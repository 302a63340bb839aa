"""Certificate stores.

Exports the abstract base class, its error types, and the two
implementations.
"""

from certcycle.store.base import (
    CertificateExpired,
    CertificateNotFound,
    CertificateStore,
    StoreError,
)
from certcycle.store.filesystem import FilesystemCertificateStore
from certcycle.store.memory import MemoryCertificateStore

__all__ = [
    "CertificateExpired",
    "CertificateNotFound",
    "CertificateStore",
    "FilesystemCertificateStore",
    "MemoryCertificateStore",
    "StoreError",
]
