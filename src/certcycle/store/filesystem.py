"""Filesystem certificate store.

Layout under the store root::

    self-signed/<version>/{fullchain.pem,privkey.pem,meta.json}
    self-signed/current -> <version>
    letsencrypt/<version>/...
    letsencrypt/current -> <version>
    live -> letsencrypt/<version>
    active.crt -> live/fullchain.pem
    active.key -> live/privkey.pem
    cert_type
    journal.json

Every write is new-then-swap.  A version directory is assembled under a
``.tmp-`` name, fsynced, and renamed into place; pointers are swapped by
renaming a freshly created symlink over the old one.  ``active.crt``
and ``active.key`` both resolve through the single ``live`` link, so a
reader can never pair a new chain with an old key.  A process killed
mid-write leaves only a ``.tmp-`` directory behind, which is discarded
on the next start.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import shutil
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from certcycle.core.types import CertificateType, ChallengeType
from certcycle.models.certificate import CertificateRecord
from certcycle.models.journal import LifecycleJournal
from certcycle.store.base import CertificateStore, StoreError

if TYPE_CHECKING:
    from certcycle.core.clock import Clock
    from certcycle.models.certificate import CertificateBundle

log = logging.getLogger(__name__)

CHAIN_FILE = "fullchain.pem"
KEY_FILE = "privkey.pem"
META_FILE = "meta.json"
CURRENT_LINK = "current"
LIVE_LINK = "live"
ACTIVE_CERT = "active.crt"
ACTIVE_KEY = "active.key"
TYPE_MARKER = "cert_type"
JOURNAL_FILE = "journal.json"
LOCK_FILE = ".lock"

_TMP_PREFIX = ".tmp-"


def _fsync_dir(path: Path) -> None:
    """Flush directory entries so renames survive a crash."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass  # Not supported on every filesystem
    finally:
        os.close(fd)


def _write_file(path: Path, data: str, mode: int = 0o644) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(data)
        fh.flush()
        os.fsync(fh.fileno())
    os.chmod(path, mode)


def atomic_write_text(path: Path, data: str, mode: int = 0o644) -> None:
    """Write *data* to *path* via a temporary file and ``os.replace``."""
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}")
    try:
        _write_file(tmp, data, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


def swap_symlink(link: Path, target: str) -> None:
    """Atomically point *link* at *target* (a path relative to the link)."""
    tmp = link.with_name(f".{link.name}.{secrets.token_hex(4)}")
    os.symlink(target, tmp)
    try:
        os.replace(tmp, link)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    _fsync_dir(link.parent)


class FilesystemCertificateStore(CertificateStore):
    """Durable store rooted at *root*.

    Parameters
    ----------
    root:
        Store directory; created if missing.
    clock:
        Callable returning the current aware UTC datetime.

    """

    def __init__(self, root: str | Path, clock: Clock | None = None) -> None:
        super().__init__(clock)
        self._root = Path(root)
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            for ctype in CertificateType:
                (self._root / ctype.value).mkdir(exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create certificate store at {self._root}: {exc}"
            raise StoreError(msg) from exc
        self._discard_partial_writes()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def lock_path(self) -> Path:
        return self._root / LOCK_FILE

    @property
    def active_cert_path(self) -> Path:
        return self._root / ACTIVE_CERT

    @property
    def active_key_path(self) -> Path:
        return self._root / ACTIVE_KEY

    # -- reads ---------------------------------------------------------------

    def current(self) -> CertificateRecord | None:
        live = self._root / LIVE_LINK
        if not live.is_symlink():
            return None
        target = self._root / os.readlink(live)
        return self._load_version(target)

    def candidate(self, certificate_type: CertificateType) -> CertificateRecord | None:
        link = self._root / certificate_type.value / CURRENT_LINK
        if not link.is_symlink():
            return None
        return self._load_version(link.parent / os.readlink(link))

    def history(self, certificate_type: CertificateType) -> list[CertificateRecord]:
        records = []
        for version_dir in self._version_dirs(certificate_type):
            record = self._load_version(version_dir)
            if record is not None:
                records.append(record)
        return records

    # -- writes --------------------------------------------------------------

    def _write_candidate(self, bundle: CertificateBundle) -> CertificateRecord:
        type_dir = self._root / bundle.certificate_type.value
        version = self._new_version(type_dir, bundle)
        tmp_dir = type_dir / f"{_TMP_PREFIX}{version}"
        final_dir = type_dir / version

        try:
            tmp_dir.mkdir(mode=0o755)
            _write_file(tmp_dir / CHAIN_FILE, bundle.cert_pem, 0o644)
            _write_file(tmp_dir / KEY_FILE, bundle.key_pem, 0o600)
            _write_file(
                tmp_dir / META_FILE,
                json.dumps(self._meta(bundle, version), indent=2),
                0o644,
            )
            _fsync_dir(tmp_dir)
            os.rename(tmp_dir, final_dir)
            _fsync_dir(type_dir)
            swap_symlink(type_dir / CURRENT_LINK, version)
        except OSError as exc:
            shutil.rmtree(tmp_dir, ignore_errors=True)
            msg = f"Failed to write {bundle.certificate_type.value} certificate: {exc}"
            raise StoreError(msg) from exc

        record = self._load_version(final_dir)
        if record is None:
            msg = f"Certificate version {final_dir} unreadable after write"
            raise StoreError(msg)
        return record

    def _publish(self, record: CertificateRecord) -> None:
        target = f"{record.certificate_type.value}/{record.version}"
        try:
            swap_symlink(self._root / LIVE_LINK, target)
            self._ensure_active_links()
            atomic_write_text(
                self._root / TYPE_MARKER,
                f"{record.certificate_type.value}\n",
            )
        except OSError as exc:
            msg = f"Failed to publish {target}: {exc}"
            raise StoreError(msg) from exc

    def prune(self, keep: int) -> int:
        if keep < 0:
            msg = f"keep must be >= 0, got {keep}"
            raise ValueError(msg)

        active = self.current()
        removed = 0
        for ctype in CertificateType:
            protected = set()
            candidate = self.candidate(ctype)
            if candidate is not None:
                protected.add(candidate.version)
            if active is not None and active.certificate_type == ctype:
                protected.add(active.version)

            archived = [
                d for d in self._version_dirs(ctype) if d.name not in protected
            ]
            for version_dir in archived[keep:]:
                shutil.rmtree(version_dir)
                removed += 1
                log.info("Pruned %s version %s", ctype.value, version_dir.name)
        return removed

    # -- journal -------------------------------------------------------------

    def read_journal(self) -> LifecycleJournal:
        path = self._root / JOURNAL_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return LifecycleJournal()
        except (OSError, ValueError) as exc:
            log.warning("Ignoring unreadable journal %s: %s", path, exc)
            return LifecycleJournal()
        return LifecycleJournal.from_dict(data)

    def write_journal(self, journal: LifecycleJournal) -> None:
        atomic_write_text(
            self._root / JOURNAL_FILE,
            json.dumps(journal.to_dict(), indent=2),
        )

    # -- helpers -------------------------------------------------------------

    def _version_dirs(self, certificate_type: CertificateType) -> list[Path]:
        type_dir = self._root / certificate_type.value
        dirs = [
            d
            for d in type_dir.iterdir()
            if d.is_dir()
            and not d.is_symlink()
            and not d.name.startswith(".")
        ]
        return sorted(dirs, key=lambda d: d.name, reverse=True)

    def _new_version(self, type_dir: Path, bundle: CertificateBundle) -> str:
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
        version = f"{stamp}-{bundle.serial_number[:8]}"
        suffix = 1
        candidate = version
        while (type_dir / candidate).exists():
            candidate = f"{version}.{suffix}"
            suffix += 1
        return candidate

    def _ensure_active_links(self) -> None:
        for name, target in (
            (ACTIVE_CERT, f"{LIVE_LINK}/{CHAIN_FILE}"),
            (ACTIVE_KEY, f"{LIVE_LINK}/{KEY_FILE}"),
        ):
            link = self._root / name
            if link.is_symlink() and os.readlink(link) == target:
                continue
            swap_symlink(link, target)

    def _discard_partial_writes(self) -> None:
        for ctype in CertificateType:
            for entry in (self._root / ctype.value).iterdir():
                if entry.name.startswith(_TMP_PREFIX):
                    log.warning("Discarding partially written version %s", entry)
                    shutil.rmtree(entry, ignore_errors=True)

    @staticmethod
    def _meta(bundle: CertificateBundle, version: str) -> dict:
        return {
            "certificate_type": bundle.certificate_type.value,
            "domain": bundle.domain,
            "alternative_names": list(bundle.alternative_names),
            "not_before": bundle.not_before.isoformat(),
            "not_after": bundle.not_after.isoformat(),
            "source_challenge": (
                bundle.source_challenge.value if bundle.source_challenge else None
            ),
            "serial_number": bundle.serial_number,
            "fingerprint": bundle.fingerprint,
            "version": version,
        }

    @staticmethod
    def _load_version(version_dir: Path) -> CertificateRecord | None:
        try:
            meta = json.loads((version_dir / META_FILE).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            log.warning("Unreadable certificate metadata in %s: %s", version_dir, exc)
            return None

        source = meta.get("source_challenge")
        return CertificateRecord(
            certificate_type=CertificateType(meta["certificate_type"]),
            domain=meta["domain"],
            alternative_names=tuple(meta.get("alternative_names", [])),
            not_before=datetime.fromisoformat(meta["not_before"]),
            not_after=datetime.fromisoformat(meta["not_after"]),
            private_key_ref=str(version_dir / KEY_FILE),
            certificate_chain_ref=str(version_dir / CHAIN_FILE),
            source_challenge=ChallengeType(source) if source else None,
            serial_number=meta.get("serial_number", ""),
            fingerprint=meta.get("fingerprint", ""),
            version=meta.get("version", version_dir.name),
        )
