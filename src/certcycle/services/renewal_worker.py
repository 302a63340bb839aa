"""Scheduled renewal worker.

Daemon thread that runs :meth:`LifecycleManager.scheduled_check` every
``check_interval_seconds``.  A check that raises unexpectedly is logged
and retried with exponential backoff, capped at 8x the interval.

Usage::

    worker = RenewalWorker(manager, settings.renewal)
    worker.start()
    ...
    worker.stop()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from certcycle.acquire.errors import CryptoFailure

if TYPE_CHECKING:
    from certcycle.config.settings import RenewalSettings
    from certcycle.core.types import CheckOutcome
    from certcycle.lifecycle.manager import LifecycleManager

log = logging.getLogger(__name__)


class RenewalWorker:
    """Runs scheduled lifecycle checks in a background thread.

    Parameters
    ----------
    manager:
        The lifecycle manager to drive.
    settings:
        Provides ``check_interval_seconds``.
    run_immediately:
        When true the first check runs as soon as the thread starts
        instead of after one interval.

    """

    def __init__(
        self,
        manager: LifecycleManager,
        settings: RenewalSettings,
        *,
        run_immediately: bool = True,
    ) -> None:
        self._manager = manager
        self._interval = settings.check_interval_seconds
        self._run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._consecutive_failures = 0
        self._last_outcome: CheckOutcome | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_outcome(self) -> CheckOutcome | None:
        return self._last_outcome

    def start(self) -> None:
        """Start the background worker thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="renewal-worker",
            daemon=True,
        )
        self._thread.start()
        log.info("Renewal worker started (interval=%ds)", self._interval)

    def request_stop(self) -> None:
        """Ask the loop to exit after the current check.  Safe from signal handlers."""
        self._stop_event.set()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the worker to stop and wait for the current check."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            log.info("Renewal worker stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until :meth:`stop` is called.  Returns whether it was."""
        return self._stop_event.wait(timeout=timeout)

    def next_delay(self) -> float:
        """Seconds until the next check, honouring failure backoff."""
        if self._consecutive_failures == 0:
            return float(self._interval)
        return float(
            min(
                self._interval * (2**self._consecutive_failures),
                self._interval * 8,
            ),
        )

    def run_once(self) -> CheckOutcome | None:
        """Run one check, recording failures for backoff."""
        try:
            outcome = self._manager.scheduled_check()
        except CryptoFailure as exc:
            self._consecutive_failures += 1
            log.error(  # noqa: TRY400
                "Scheduled check failed to generate key material: %s (consecutive: %d)",
                exc.detail,
                self._consecutive_failures,
            )
            return None
        except Exception:
            self._consecutive_failures += 1
            log.exception(
                "Scheduled check failed (consecutive: %d)",
                self._consecutive_failures,
            )
            return None
        self._consecutive_failures = 0
        self._last_outcome = outcome
        return outcome

    def _run(self) -> None:
        """Main worker loop."""
        if not self._run_immediately:
            self._stop_event.wait(timeout=self._interval)
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(timeout=self.next_delay())
