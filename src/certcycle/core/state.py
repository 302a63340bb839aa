"""Certificate lifecycle state machine.

Defines the valid transitions between :class:`LifecycleState` values.
The lifecycle manager checks every move with :func:`assert_transition`
before publishing a certificate, and records it with
:func:`log_transition`.

Usage::

    from certcycle.core.state import LIFECYCLE_TRANSITIONS, assert_transition
    from certcycle.core.types import LifecycleState

    assert_transition(
        LifecycleState.SELF_SIGNED_ACTIVE,
        LifecycleState.LETS_ENCRYPT_ACTIVE,
        LIFECYCLE_TRANSITIONS,
    )
"""

from __future__ import annotations

import logging

from certcycle.core.types import LifecycleState

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# no-certificate -> self-signed (initial setup, always first).
# self-signed -> letsencrypt (upgrade) or self-signed (regenerated).
# letsencrypt* -> letsencrypt (renewal or a newer valid candidate) or
# self-signed (expiry fallback).
# Nothing ever returns to no-certificate.
# ---------------------------------------------------------------------------

_ACTIVE_TARGETS = frozenset(
    {
        LifecycleState.SELF_SIGNED_ACTIVE,
        LifecycleState.LETS_ENCRYPT_ACTIVE,
    }
)

LIFECYCLE_TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.NO_CERTIFICATE: frozenset({LifecycleState.SELF_SIGNED_ACTIVE}),
    LifecycleState.SELF_SIGNED_ACTIVE: _ACTIVE_TARGETS,
    LifecycleState.LETS_ENCRYPT_ACTIVE: _ACTIVE_TARGETS,
    LifecycleState.LETS_ENCRYPT_EXPIRING_SOON: _ACTIVE_TARGETS,
    LifecycleState.LETS_ENCRYPT_EXPIRED: _ACTIVE_TARGETS,
}


def assert_transition(
    current: LifecycleState,
    target: LifecycleState,
    table: dict = LIFECYCLE_TRANSITIONS,
) -> None:
    """Raise :class:`ValueError` if *current* -> *target* is not allowed.

    Parameters
    ----------
    current:
        The state derived from the store before the change.
    target:
        The state the change would produce.
    table:
        Transition table, :data:`LIFECYCLE_TRANSITIONS` by default.

    """
    allowed = table.get(current)
    if allowed is None:
        msg = f"Unknown state {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(
            msg,
        )


def log_transition(
    from_state,
    to_state,
    *,
    reason: str | None = None,
    version: str | None = None,
) -> None:
    """Emit a structured log entry for a lifecycle transition.

    Parameters
    ----------
    from_state:
        The previous state.
    to_state:
        The new state.
    reason:
        Optional human-readable reason for the transition.
    version:
        Store version of the certificate that became active.

    """
    extra = {
        "event": "state_transition",
        "from_state": from_state.value if hasattr(from_state, "value") else str(from_state),
        "to_state": to_state.value if hasattr(to_state, "value") else str(to_state),
    }
    if reason:
        extra["reason"] = reason
    if version:
        extra["certificate_version"] = version
    log.info(
        "lifecycle: %s -> %s%s",
        extra["from_state"],
        extra["to_state"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
