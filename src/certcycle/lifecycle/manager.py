"""Certificate lifecycle state machine.

:class:`LifecycleManager` decides which certificate should be live,
triggers acquisition and renewal, and publishes through
:meth:`CertificateStore.activate`.  The rules it enforces:

- Setup always activates a self-signed certificate first, before
  anything network dependent is attempted.
- A valid Let's Encrypt candidate always wins over self-signed.
- An expired Let's Encrypt certificate is replaced by self-signed on
  the next check; renewal continues on later checks.
- A failed upgrade or renewal leaves the live certificate untouched.
- Once a certificate is live, nothing ever unsets it.

Runs never overlap: each entry point holds a non-blocking guard (an
in-process lock plus ``flock`` on the store's lock file).  A concurrent
scheduled trigger is skipped; a concurrent explicit command gets
:class:`BusyError`.
"""

from __future__ import annotations

import dataclasses
import fcntl
import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING

from certcycle.acquire.acquirer import CertificateAcquirer
from certcycle.acquire.errors import AllChallengesFailed, CryptoFailure
from certcycle.core.state import assert_transition, log_transition
from certcycle.core.types import CertificateType, CheckOutcome, LifecycleState
from certcycle.lifecycle.status import CandidateSummary, StatusReport
from certcycle.logging.setup import run_context
from certcycle.metrics.collector import (
    ACQUISITIONS_TOTAL,
    ACTIVE_LETS_ENCRYPT,
    CHECKS_TOTAL,
    DAYS_REMAINING,
    LAST_CHECK_TIMESTAMP,
    MetricsCollector,
)
from certcycle.models.journal import FailureInfo
from certcycle.notify.reload import ReloadNotificationFailed, build_notifier
from certcycle.store.base import StoreError
from certcycle.store.filesystem import FilesystemCertificateStore

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

    from certcycle.config.settings import CertcycleSettings, RenewalSettings
    from certcycle.core.clock import Clock
    from certcycle.core.types import ChallengeType
    from certcycle.models.certificate import CertificateRecord
    from certcycle.models.journal import LifecycleJournal
    from certcycle.notify.reload import ReloadNotifier
    from certcycle.store.base import CertificateStore

log = logging.getLogger(__name__)


class BusyError(Exception):
    """Another lifecycle run holds the guard."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class LifecycleManager:
    """Drives the certificate lifecycle for one domain.

    Parameters
    ----------
    store:
        Where candidates and the live pointer are kept.
    acquirer:
        Produces self-signed and Let's Encrypt bundles.
    notifier:
        Told to reload after every change of the live certificate.
    domain:
        Primary name.
    alternative_names:
        Additional names for new certificates.
    renewal:
        Threshold and check interval.
    metrics:
        Collector updated after every run.
    metrics_textfile:
        If set, the collector's export is written here after every run.

    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: CertificateStore,
        acquirer: CertificateAcquirer,
        notifier: ReloadNotifier,
        domain: str,
        alternative_names: Sequence[str] = (),
        renewal: RenewalSettings,
        metrics: MetricsCollector | None = None,
        metrics_textfile: str | Path | None = None,
    ) -> None:
        self._store = store
        self._acquirer = acquirer
        self._notifier = notifier
        self._domain = domain
        self._alternative_names = tuple(alternative_names)
        self._renewal = renewal
        self._metrics = metrics or MetricsCollector()
        self._metrics_textfile = metrics_textfile
        self._lock = threading.Lock()
        self._failure: AllChallengesFailed | StoreError | None = None

    @classmethod
    def from_settings(
        cls,
        settings: CertcycleSettings,
        *,
        clock: Clock | None = None,
    ) -> LifecycleManager:
        """Wire the production collaborators from configuration."""
        return cls(
            store=FilesystemCertificateStore(settings.store.path, clock=clock),
            acquirer=CertificateAcquirer.from_settings(settings, clock=clock),
            notifier=build_notifier(settings.reload),
            domain=settings.domain,
            alternative_names=settings.alternative_names,
            renewal=settings.renewal,
            metrics_textfile=settings.metrics.textfile_path,
        )

    @property
    def store(self) -> CertificateStore:
        return self._store

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    # -- state derivation ----------------------------------------------------

    def state(self) -> LifecycleState:
        return self._state_of(self._store.current())

    def _state_of(self, active: CertificateRecord | None) -> LifecycleState:
        if active is None:
            return LifecycleState.NO_CERTIFICATE
        if active.certificate_type == CertificateType.SELF_SIGNED:
            return LifecycleState.SELF_SIGNED_ACTIVE
        now = self._store.now()
        if active.is_expired(now):
            return LifecycleState.LETS_ENCRYPT_EXPIRED
        if active.is_expiring_soon(now, self._renewal.threshold_days):
            return LifecycleState.LETS_ENCRYPT_EXPIRING_SOON
        return LifecycleState.LETS_ENCRYPT_ACTIVE

    # -- public entry points -------------------------------------------------

    def setup(self, *, upgrade: bool = True, raise_on_failure: bool = False) -> CheckOutcome:
        """Activate a self-signed certificate, then attempt the upgrade.

        Raises
        ------
        CryptoFailure
            If the self-signed certificate cannot be generated.
        AllChallengesFailed
            Only with *raise_on_failure*; the self-signed certificate
            stays live.  :class:`StoreError` is raised the same way when
            the issued certificate does not match its key.
        BusyError
            If another run holds the guard.

        """
        with self._exclusive(), run_context("setup"):
            self._failure = None
            log.info("Setup started for %s", self._domain)
            outcome = self._setup_locked(upgrade=upgrade)
            self._finish("setup", outcome)
            self._raise_failure(raise_on_failure)
            return outcome

    def upgrade(self, *, raise_on_failure: bool = False) -> CheckOutcome:
        """Force a Let's Encrypt attempt with the configured names.

        Runs setup first when nothing is live yet.  An expired live Let's
        Encrypt certificate is replaced by self-signed before the attempt.
        Returns ``UPGRADED``/``RENEWED`` on success and
        ``UPGRADE_FAILED``/``RENEWAL_FAILED`` otherwise.
        """
        with self._exclusive(), run_context("upgrade"):
            self._failure = None
            active = self._store.current()
            if active is None:
                self._setup_locked(upgrade=False)
            elif self._needs_fallback(active):
                self._fall_back(active)
            outcome = self._attempt_lets_encrypt(self._domain, self._alternative_names)
            self._finish("upgrade", outcome)
            self._raise_failure(raise_on_failure)
            return outcome

    def check(self, *, raise_on_failure: bool = False) -> CheckOutcome:
        """Run the scheduled-check logic once, as an explicit command.

        Unlike :meth:`scheduled_check`, a concurrent run raises
        :class:`BusyError` and *raise_on_failure* surfaces a failed
        renewal or upgrade.
        """
        return self._run_check("check", raise_on_failure=raise_on_failure)

    def scheduled_check(self) -> CheckOutcome:
        """Run one scheduled check.

        Never raises for recoverable conditions.  A concurrent run makes
        this return :attr:`CheckOutcome.SKIPPED` without waiting.
        """
        try:
            return self._run_check("scheduled-check", raise_on_failure=False)
        except BusyError as exc:
            log.info("Scheduled check skipped: %s", exc.detail)
            self._metrics.increment(CHECKS_TOTAL, labels={"outcome": CheckOutcome.SKIPPED.value})
            return CheckOutcome.SKIPPED

    def _run_check(self, operation: str, *, raise_on_failure: bool) -> CheckOutcome:
        with self._exclusive(), run_context(operation):
            self._failure = None
            outcome = self._check_locked()
            self._finish(operation, outcome)
            self._raise_failure(raise_on_failure)
            return outcome

    def force_self_signed(self) -> bool:
        """Regenerate the self-signed candidate.

        It is activated only when no valid Let's Encrypt candidate
        exists.  Returns whether the live certificate changed.
        """
        with self._exclusive(), run_context("self-signed"):
            record = self._put_self_signed()
            le = self._valid_candidate(CertificateType.LETS_ENCRYPT)
            if le is not None:
                log.info(
                    "New self-signed candidate %s stored; Let's Encrypt %s stays preferred",
                    record.version,
                    le.version,
                )
                if self._is_active(le):
                    changed = False
                else:
                    self._activate(
                        CertificateType.LETS_ENCRYPT,
                        "valid Let's Encrypt certificate preferred",
                    )
                    changed = True
            else:
                self._activate(CertificateType.SELF_SIGNED, "self-signed certificate forced")
                changed = True
            self._finish("self-signed", None)
            return changed

    def prune(self, keep: int) -> int:
        with self._exclusive():
            removed = self._store.prune(keep)
            log.info("Pruned %d archived certificate version(s)", removed)
            return removed

    def status(self) -> StatusReport:
        """Build the operator status report from the store and journal."""
        active = self._store.current()
        journal = self._store.read_journal()
        now = self._store.now()

        candidates = []
        for ctype in CertificateType:
            cand = self._store.candidate(ctype)
            if cand is not None:
                candidates.append(
                    CandidateSummary.from_record(cand, now, active=self._same(cand, active)),
                )

        return StatusReport(
            state=self._state_of(active),
            active_type=active.certificate_type if active else None,
            domain=active.domain if active else None,
            alternative_names=active.alternative_names if active else (),
            not_after=active.not_after if active else None,
            days_remaining=active.days_remaining(now) if active else None,
            source_challenge=(
                active.source_challenge.value if active and active.source_challenge else None
            ),
            last_check_at=journal.last_check_at,
            last_outcome=journal.last_outcome,
            last_success_at=journal.last_success_at,
            last_failure=journal.last_failure,
            last_reload_error=journal.last_reload_error,
            candidates=tuple(candidates),
        )

    # -- transitions (guard held) -------------------------------------------

    def _setup_locked(self, *, upgrade: bool) -> CheckOutcome:
        self._ensure_self_signed_candidate()
        active = self._store.current()

        if active is None or self._needs_fallback(active):
            self._activate(CertificateType.SELF_SIGNED, "initial self-signed certificate")
        elif active.certificate_type == CertificateType.SELF_SIGNED and not self._is_active(
            self._store.candidate(CertificateType.SELF_SIGNED),
        ):
            self._activate(CertificateType.SELF_SIGNED, "self-signed certificate regenerated")

        if self._prefer_lets_encrypt():
            return CheckOutcome.PREFERRED_LETS_ENCRYPT
        if not upgrade or self._active_type() == CertificateType.LETS_ENCRYPT:
            return CheckOutcome.SETUP
        return self._attempt_lets_encrypt(self._domain, self._alternative_names)

    def _check_locked(self) -> CheckOutcome:
        active = self._store.current()
        if active is None:
            log.info("No live certificate; running setup")
            self._setup_locked(upgrade=True)
            return CheckOutcome.SETUP

        if self._prefer_lets_encrypt():
            return CheckOutcome.PREFERRED_LETS_ENCRYPT

        now = self._store.now()
        if active.certificate_type == CertificateType.SELF_SIGNED:
            if active.is_expired(now):
                self._put_self_signed()
                self._activate(CertificateType.SELF_SIGNED, "self-signed certificate expired")
            return self._attempt_lets_encrypt(self._domain, self._alternative_names)

        if active.is_expired(now):
            self._fall_back(active)
            return CheckOutcome.FELL_BACK

        if not active.is_expiring_soon(now, self._renewal.threshold_days):
            log.debug(
                "Let's Encrypt certificate valid for %d more day(s); nothing to do",
                active.days_remaining(now),
            )
            return CheckOutcome.NOOP

        log.info(
            "Let's Encrypt certificate expires in %d day(s) (threshold %d); renewing",
            active.days_remaining(now),
            self._renewal.threshold_days,
        )
        return self._attempt_lets_encrypt(
            active.domain,
            active.alternative_names,
            preferred=active.source_challenge,
        )

    def _attempt_lets_encrypt(
        self,
        domain: str,
        alternative_names: Sequence[str],
        *,
        preferred: ChallengeType | None = None,
    ) -> CheckOutcome:
        renewing = self._active_type() == CertificateType.LETS_ENCRYPT
        operation = "renewal" if renewing else "upgrade"
        success = CheckOutcome.RENEWED if renewing else CheckOutcome.UPGRADED
        failure = CheckOutcome.RENEWAL_FAILED if renewing else CheckOutcome.UPGRADE_FAILED

        try:
            bundle = self._acquirer.acquire_lets_encrypt(domain, alternative_names, preferred)
            self._store.put(bundle)
        except AllChallengesFailed as exc:
            self._count_acquisition(CertificateType.LETS_ENCRYPT, "failure")
            log.warning("Let's Encrypt %s failed: %s", operation, exc.detail)
            self._record_failure(operation, exc.detail, exc.failure_map())
            self._failure = exc
            return failure
        except StoreError as exc:
            self._count_acquisition(CertificateType.LETS_ENCRYPT, "failure")
            log.warning("Issued certificate rejected by store: %s", exc.detail)
            self._record_failure(operation, exc.detail)
            self._failure = exc
            return failure

        self._count_acquisition(CertificateType.LETS_ENCRYPT, "success")
        self._activate(CertificateType.LETS_ENCRYPT, f"Let's Encrypt {operation}")
        self._record_success()
        return success

    def _fall_back(self, expired: CertificateRecord) -> None:
        log.warning(
            "Let's Encrypt certificate %s expired at %s; falling back to self-signed",
            expired.version,
            expired.not_after.isoformat(),
        )
        self._ensure_self_signed_candidate()
        self._activate(CertificateType.SELF_SIGNED, "Let's Encrypt certificate expired")
        self._record_failure(
            "fallback",
            f"Let's Encrypt certificate expired at {expired.not_after.isoformat()}",
        )

    def _prefer_lets_encrypt(self) -> bool:
        """Activate a valid Let's Encrypt candidate that is not live yet."""
        le = self._valid_candidate(CertificateType.LETS_ENCRYPT)
        if le is None or self._is_active(le):
            return False
        self._activate(CertificateType.LETS_ENCRYPT, "valid Let's Encrypt certificate preferred")
        return True

    # -- primitives ----------------------------------------------------------

    def _ensure_self_signed_candidate(self) -> CertificateRecord:
        cand = self._store.candidate(CertificateType.SELF_SIGNED)
        if cand is not None and not cand.is_expired(self._store.now()):
            return cand
        return self._put_self_signed()

    def _put_self_signed(self) -> CertificateRecord:
        try:
            bundle = self._acquirer.acquire_self_signed(self._domain, self._alternative_names)
        except CryptoFailure:
            self._count_acquisition(CertificateType.SELF_SIGNED, "failure")
            raise
        self._count_acquisition(CertificateType.SELF_SIGNED, "success")
        return self._store.put(bundle)

    def _activate(self, certificate_type: CertificateType, reason: str) -> None:
        from_state = self.state()
        to_state = (
            LifecycleState.LETS_ENCRYPT_ACTIVE
            if certificate_type == CertificateType.LETS_ENCRYPT
            else LifecycleState.SELF_SIGNED_ACTIVE
        )
        assert_transition(from_state, to_state)
        self._store.activate(certificate_type)
        active = self._store.current()
        log_transition(
            from_state,
            to_state,
            reason=reason,
            version=active.version if active else None,
        )
        self._notify()

    def _notify(self) -> None:
        try:
            self._notifier.notify_reload()
        except ReloadNotificationFailed as exc:
            log.error("Reload notification failed: %s", exc.detail)  # noqa: TRY400
            self._update_journal(last_reload_error=exc.detail)
        else:
            self._update_journal(last_reload_error=None)

    def _valid_candidate(self, certificate_type: CertificateType) -> CertificateRecord | None:
        cand = self._store.candidate(certificate_type)
        if cand is None or cand.is_expired(self._store.now()):
            return None
        return cand

    def _needs_fallback(self, active: CertificateRecord) -> bool:
        return active.certificate_type == CertificateType.LETS_ENCRYPT and active.is_expired(
            self._store.now(),
        )

    def _active_type(self) -> CertificateType | None:
        active = self._store.current()
        return active.certificate_type if active else None

    def _is_active(self, record: CertificateRecord | None) -> bool:
        return self._same(record, self._store.current())

    @staticmethod
    def _same(a: CertificateRecord | None, b: CertificateRecord | None) -> bool:
        if a is None or b is None:
            return False
        return a.certificate_type == b.certificate_type and a.version == b.version

    # -- journal & metrics ---------------------------------------------------

    def _update_journal(self, **changes: object) -> LifecycleJournal:
        journal = dataclasses.replace(self._store.read_journal(), **changes)
        try:
            self._store.write_journal(journal)
        except OSError as exc:
            log.warning("Could not write lifecycle journal: %s", exc)
        return journal

    def _record_failure(
        self,
        operation: str,
        reason: str,
        details: dict[str, str] | None = None,
    ) -> None:
        failure = FailureInfo(
            at=self._store.now(),
            operation=operation,
            reason=reason,
            details=dict(details or {}),
        )
        self._update_journal(last_failure=failure)

    def _record_success(self) -> None:
        self._update_journal(last_success_at=self._store.now(), last_failure=None)

    def _count_acquisition(self, certificate_type: CertificateType, result: str) -> None:
        self._metrics.increment(
            ACQUISITIONS_TOTAL,
            labels={"type": certificate_type.value, "result": result},
        )

    def _raise_failure(self, enabled: bool) -> None:  # noqa: FBT001
        if enabled and self._failure is not None:
            raise self._failure

    def _finish(self, operation: str, outcome: CheckOutcome | None) -> None:
        now = self._store.now()
        if outcome is not None:
            self._update_journal(last_check_at=now, last_outcome=outcome.value)
            self._metrics.increment(CHECKS_TOTAL, labels={"outcome": outcome.value})
        log.info(
            "%s finished: %s (state %s)",
            operation,
            outcome.value if outcome else "done",
            self.state().value,
            extra={"event": "lifecycle_run", "outcome": outcome.value if outcome else None},
        )

        self._metrics.set_gauge(LAST_CHECK_TIMESTAMP, now.timestamp())
        self.refresh_metrics()

        if self._metrics_textfile:
            try:
                self._metrics.write_textfile(self._metrics_textfile)
            except OSError as exc:
                log.warning("Could not write metrics textfile %s: %s", self._metrics_textfile, exc)

    def refresh_metrics(self) -> MetricsCollector:
        """Set the certificate gauges from the store's current contents."""
        now = self._store.now()
        for ctype in CertificateType:
            cand = self._store.candidate(ctype)
            if cand is None:
                self._metrics.clear_gauge(DAYS_REMAINING, labels={"type": ctype.value})
            else:
                self._metrics.set_gauge(
                    DAYS_REMAINING,
                    cand.days_remaining(now),
                    labels={"type": ctype.value},
                )
        is_le = self._active_type() == CertificateType.LETS_ENCRYPT
        self._metrics.set_gauge(ACTIVE_LETS_ENCRYPT, 1 if is_le else 0)
        return self._metrics

    # -- guard ---------------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            msg = "Another lifecycle run is in progress in this process"
            raise BusyError(msg)
        lock_file = None
        try:
            lock_path = self._store.lock_path
            if lock_path is not None:
                lock_file = open(lock_path, "a+")  # noqa: PTH123, SIM115
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except OSError as exc:
                    msg = f"Another certcycle process holds {lock_path}"
                    raise BusyError(msg) from exc
            yield
        finally:
            if lock_file is not None:
                # Closing the descriptor releases the flock.
                lock_file.close()
            self._lock.release()
