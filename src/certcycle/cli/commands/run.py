"""Run subcommand: scheduled checks until SIGTERM or SIGINT.

Usage::

    certcycle -c config.yaml run
"""

from __future__ import annotations

import logging
import signal

log = logging.getLogger(__name__)

# Seconds to wait for an in-flight check after a stop signal
_STOP_TIMEOUT = 60


def run_daemon(args) -> int:
    """Start the renewal worker and block until a stop signal arrives."""
    from certcycle.config import get_config
    from certcycle.lifecycle import LifecycleManager
    from certcycle.services import RenewalWorker

    settings = get_config().settings
    manager = LifecycleManager.from_settings(settings)
    worker = RenewalWorker(manager, settings.renewal)

    _register_signals(worker)
    worker.start()
    try:
        worker.wait()
    finally:
        worker.stop(timeout=_STOP_TIMEOUT)
    return 0


def _register_signals(worker) -> None:
    """Register SIGTERM and SIGINT handlers that stop *worker*.

    Must be called from the main thread.
    """

    def _handler(signum: int, frame) -> None:
        log.info("Received %s, stopping", signal.Signals(signum).name)
        worker.request_stop()

    try:
        signal.signal(signal.SIGTERM, _handler)
        signal.signal(signal.SIGINT, _handler)
    except (ValueError, OSError):
        # Not in main thread
        log.debug("Could not register signal handlers (not main thread)")
