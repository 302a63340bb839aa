"""Long-running services."""

from certcycle.services.renewal_worker import RenewalWorker

__all__ = ["RenewalWorker"]
