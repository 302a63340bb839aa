"""Tests for the background renewal worker."""

from __future__ import annotations

import logging
import threading
from unittest.mock import MagicMock

import pytest

from certcycle.acquire.errors import CryptoFailure
from certcycle.config.settings import RenewalSettings
from certcycle.core.types import CheckOutcome
from certcycle.services.renewal_worker import RenewalWorker


@pytest.fixture()
def manager():
    m = MagicMock()
    m.scheduled_check.return_value = CheckOutcome.NOOP
    return m


def _worker(manager, interval=60, **kwargs):
    return RenewalWorker(
        manager,
        RenewalSettings(threshold_days=30, check_interval_seconds=interval),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_no_failures_uses_interval(self, manager):
        assert _worker(manager).next_delay() == 60.0

    def test_backoff_grows_and_caps(self, manager):
        manager.scheduled_check.side_effect = RuntimeError("boom")
        worker = _worker(manager)
        delays = []
        for _ in range(5):
            worker.run_once()
            delays.append(worker.next_delay())
        assert delays == [120.0, 240.0, 480.0, 480.0, 480.0]

    def test_success_resets(self, manager):
        worker = _worker(manager)
        manager.scheduled_check.side_effect = RuntimeError("boom")
        worker.run_once()
        worker.run_once()
        assert worker.consecutive_failures == 2

        manager.scheduled_check.side_effect = None
        assert worker.run_once() == CheckOutcome.NOOP
        assert worker.consecutive_failures == 0
        assert worker.next_delay() == 60.0


# ---------------------------------------------------------------------------
# run_once
# ---------------------------------------------------------------------------


class TestRunOnce:
    def test_records_outcome(self, manager):
        manager.scheduled_check.return_value = CheckOutcome.RENEWED
        worker = _worker(manager)
        assert worker.run_once() == CheckOutcome.RENEWED
        assert worker.last_outcome == CheckOutcome.RENEWED

    def test_crypto_failure_logged_without_traceback(self, manager, caplog):
        manager.scheduled_check.side_effect = CryptoFailure("entropy exhausted")
        worker = _worker(manager)
        with caplog.at_level(logging.ERROR, logger="certcycle.services.renewal_worker"):
            assert worker.run_once() is None
        assert "entropy exhausted" in caplog.text
        assert caplog.records[-1].exc_info is None
        assert worker.consecutive_failures == 1

    def test_unexpected_error_logged_with_traceback(self, manager, caplog):
        manager.scheduled_check.side_effect = OSError("disk full")
        worker = _worker(manager)
        with caplog.at_level(logging.ERROR, logger="certcycle.services.renewal_worker"):
            worker.run_once()
        assert caplog.records[-1].exc_info is not None


# ---------------------------------------------------------------------------
# Thread lifecycle
# ---------------------------------------------------------------------------


class TestThread:
    def test_runs_immediately_and_stops(self, manager):
        ran = threading.Event()

        def _check():
            ran.set()
            return CheckOutcome.NOOP

        manager.scheduled_check.side_effect = _check
        worker = _worker(manager, interval=3600)
        worker.start()
        try:
            assert ran.wait(timeout=5)
            assert worker.is_running
        finally:
            worker.stop(timeout=5)
        assert not worker.is_running
        assert manager.scheduled_check.call_count == 1

    def test_delayed_start_skips_first_check(self, manager):
        worker = _worker(manager, interval=3600, run_immediately=False)
        worker.start()
        worker.stop(timeout=5)
        manager.scheduled_check.assert_not_called()

    def test_start_twice_is_noop(self, manager):
        worker = _worker(manager, interval=3600, run_immediately=False)
        worker.start()
        first = worker._thread
        worker.start()
        assert worker._thread is first
        worker.stop(timeout=5)

    def test_request_stop_releases_wait(self, manager):
        worker = _worker(manager)
        assert worker.wait(timeout=0.01) is False
        worker.request_stop()
        assert worker.wait(timeout=0.01) is True
