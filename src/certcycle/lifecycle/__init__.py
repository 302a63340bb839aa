"""Certificate lifecycle: state machine, guard and status report."""

from certcycle.lifecycle.manager import BusyError, LifecycleManager
from certcycle.lifecycle.status import CandidateSummary, StatusReport

__all__ = [
    "BusyError",
    "CandidateSummary",
    "LifecycleManager",
    "StatusReport",
]
