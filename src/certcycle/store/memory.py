"""In-memory certificate store.

Same contract as the filesystem store, without persistence.  Used by
the test-suite and by ``--dry-run`` style tooling that must not touch
the live certificate directory.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from certcycle.core.types import CertificateType
from certcycle.models.certificate import CertificateRecord
from certcycle.models.journal import LifecycleJournal
from certcycle.store.base import CertificateStore

if TYPE_CHECKING:
    from certcycle.core.clock import Clock
    from certcycle.models.certificate import CertificateBundle


class MemoryCertificateStore(CertificateStore):
    """Thread-safe dict-backed store."""

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._lock = threading.Lock()
        self._versions: dict[CertificateType, list[CertificateRecord]] = {
            ctype: [] for ctype in CertificateType
        }
        self._material: dict[str, str] = {}
        self._candidates: dict[CertificateType, CertificateRecord] = {}
        self._active: CertificateRecord | None = None
        self._journal = LifecycleJournal()
        self._counter = 0

    def current(self) -> CertificateRecord | None:
        with self._lock:
            return self._active

    def candidate(self, certificate_type: CertificateType) -> CertificateRecord | None:
        with self._lock:
            return self._candidates.get(certificate_type)

    def history(self, certificate_type: CertificateType) -> list[CertificateRecord]:
        with self._lock:
            return list(reversed(self._versions[certificate_type]))

    def material(self, ref: str) -> str:
        """Return the PEM text behind a record's key or chain reference."""
        with self._lock:
            return self._material[ref]

    def _write_candidate(self, bundle: CertificateBundle) -> CertificateRecord:
        with self._lock:
            self._counter += 1
            version = f"{self._counter:06d}-{bundle.serial_number[:8]}"
            base = f"memory://{bundle.certificate_type.value}/{version}"
            record = CertificateRecord(
                certificate_type=bundle.certificate_type,
                domain=bundle.domain,
                alternative_names=bundle.alternative_names,
                not_before=bundle.not_before,
                not_after=bundle.not_after,
                private_key_ref=f"{base}/privkey.pem",
                certificate_chain_ref=f"{base}/fullchain.pem",
                source_challenge=bundle.source_challenge,
                serial_number=bundle.serial_number,
                fingerprint=bundle.fingerprint,
                version=version,
            )
            self._material[record.private_key_ref] = bundle.key_pem
            self._material[record.certificate_chain_ref] = bundle.cert_pem
            self._versions[bundle.certificate_type].append(record)
            self._candidates[bundle.certificate_type] = record
            return record

    def _publish(self, record: CertificateRecord) -> None:
        with self._lock:
            self._active = record

    def prune(self, keep: int) -> int:
        if keep < 0:
            msg = f"keep must be >= 0, got {keep}"
            raise ValueError(msg)
        removed = 0
        with self._lock:
            for ctype, versions in self._versions.items():
                protected = {self._candidates.get(ctype), self._active}
                archived = [r for r in reversed(versions) if r not in protected]
                for record in archived[keep:]:
                    versions.remove(record)
                    self._material.pop(record.private_key_ref, None)
                    self._material.pop(record.certificate_chain_ref, None)
                    removed += 1
        return removed

    def read_journal(self) -> LifecycleJournal:
        with self._lock:
            return self._journal

    def write_journal(self, journal: LifecycleJournal) -> None:
        with self._lock:
            self._journal = journal
