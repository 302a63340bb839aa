"""Structured logging configuration for certcycle.

Provides JSON and text formatters, a run-context filter that stamps
every record with the id of the lifecycle run it belongs to, and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from certcycle.config.settings import LoggingSettings

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "certcycle_run_id",
    default=None,
)
_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "certcycle_operation",
    default=None,
)

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Handled explicitly:
        "run_id",
        "operation",
    }
)


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------


def current_run_id() -> str | None:
    return _run_id.get()


@contextmanager
def run_context(
    operation: str | None = None,
    run_id: str | None = None,
) -> Iterator[str]:
    """Bind a run id (and the operation name) to every log record
    emitted inside the block.
    """
    rid = run_id or uuid.uuid4().hex[:12]
    rid_token = _run_id.set(rid)
    op_token = _operation.set(operation)
    try:
        yield rid
    finally:
        _operation.reset(op_token)
        _run_id.reset(rid_token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        run_id = getattr(record, "run_id", None)
        if run_id not in (None, "-"):
            data["run_id"] = run_id
        operation = getattr(record, "operation", None)
        if operation:
            data["operation"] = operation

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(run_id)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RunContextFilter(logging.Filter):
    """Inject the current lifecycle run id and operation into every log record.

    Falls back to ``"-"`` outside a :func:`run_context` block.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "run_id"):
            record.run_id = _run_id.get() or "-"  # type: ignore[attr-defined]
        if not hasattr(record, "operation"):
            record.operation = _operation.get()  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings, *, debug: bool = False) -> logging.Logger:
    """Configure the ``certcycle`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output and
    adds a file handler when ``settings.file`` is set.

    Returns the root ``certcycle`` logger.
    """
    level = logging.DEBUG if debug else getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("certcycle")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = RunContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    if settings.file:
        try:
            fh = logging.FileHandler(settings.file, encoding="utf-8")
            fh.setFormatter(formatter)
            fh.addFilter(ctx_filter)
            root.addHandler(fh)
        except OSError as exc:
            root.warning("Could not open log file %s: %s", settings.file, exc)

    # Quieten noisy third-party loggers
    for lib in ("acmeow", "urllib3", "requests"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
