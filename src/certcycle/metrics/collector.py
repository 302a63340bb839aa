"""In-process metrics collector.

Collects counters and gauges without external dependencies.
Exports in OpenMetrics/Prometheus text format, either on demand
(``certcycle status --prometheus``) or as a node-exporter textfile
rewritten after every lifecycle check.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

from certcycle.store.filesystem import atomic_write_text

CHECKS_TOTAL = "certcycle_checks_total"
ACQUISITIONS_TOTAL = "certcycle_acquisitions_total"
DAYS_REMAINING = "certcycle_certificate_days_remaining"
ACTIVE_LETS_ENCRYPT = "certcycle_active_letsencrypt"
LAST_CHECK_TIMESTAMP = "certcycle_last_check_timestamp_seconds"

_HELP = {
    CHECKS_TOTAL: "Lifecycle checks by outcome",
    ACQUISITIONS_TOTAL: "Certificate acquisitions by type and result",
    DAYS_REMAINING: "Days until the candidate certificate of each type expires",
    ACTIVE_LETS_ENCRYPT: "1 when the live certificate is from Let's Encrypt",
    LAST_CHECK_TIMESTAMP: "Unix time of the last lifecycle check",
}


class MetricsCollector:
    """Thread-safe in-process metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._start_time = time.time()

    def increment(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Increment a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def get(self, name: str, labels: dict | None = None) -> int:
        """Get the current value of a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges[key] = value

    def clear_gauge(self, name: str, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._gauges.pop(key, None)

    def get_gauge(self, name: str, labels: dict | None = None) -> float | None:
        key = self._make_key(name, labels)
        with self._lock:
            return self._gauges.get(key)

    def export(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = []
        lines.append("# HELP certcycle_uptime_seconds Time since process start")
        lines.append("# TYPE certcycle_uptime_seconds gauge")
        lines.append(f"certcycle_uptime_seconds {time.time() - self._start_time:.1f}")
        lines.append("")

        with self._lock:
            for kind, values in (("counter", self._counters), ("gauge", self._gauges)):
                # Group by metric name
                grouped: dict[str, list[tuple[str, float]]] = {}
                for key, value in sorted(values.items()):
                    name = key.split("{")[0] if "{" in key else key
                    grouped.setdefault(name, []).append((key, value))

                for name, entries in sorted(grouped.items()):
                    if name in _HELP:
                        lines.append(f"# HELP {name} {_HELP[name]}")
                    lines.append(f"# TYPE {name} {kind}")
                    for key, value in entries:
                        lines.append(f"{key} {_fmt(value)}")
                    lines.append("")

        return "\n".join(lines) + "\n"

    def write_textfile(self, path: str | Path) -> None:
        """Atomically write :meth:`export` output for the node-exporter collector."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_text(target, self.export())

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


def _fmt(value: float) -> str:
    if isinstance(value, int) or float(value).is_integer():
        return str(int(value))
    return f"{value:.3f}"
