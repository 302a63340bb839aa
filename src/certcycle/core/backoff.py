"""Exponential backoff helpers.

The delay for a given attempt is a pure function so polling loops can
be tested deterministically with an injected sleep and clock.
"""

from __future__ import annotations

from collections.abc import Iterator


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Return the delay before retry number *attempt* (0-based).

    ``base * 2**attempt``, capped at *cap*.
    """
    if attempt < 0:
        msg = f"attempt must be >= 0, got {attempt}"
        raise ValueError(msg)
    return min(base * (2**attempt), cap)


def backoff_schedule(attempts: int, base: float, cap: float) -> Iterator[float]:
    """Yield the delays that follow each of *attempts* failed tries.

    The final attempt has no trailing delay, so ``attempts - 1`` values
    are produced.
    """
    for attempt in range(max(attempts - 1, 0)):
        yield backoff_delay(attempt, base, cap)
