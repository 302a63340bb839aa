"""Logging subsystem for certcycle.

Public API::

    from certcycle.logging import configure_logging

    configure_logging(settings.logging)
"""

from certcycle.logging.setup import configure_logging, current_run_id, run_context

__all__ = ["configure_logging", "current_run_id", "run_context"]
