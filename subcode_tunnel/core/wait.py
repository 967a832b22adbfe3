"""
Bounded wait-for-condition.

A probe is called at a fixed interval until it returns a value or the
timeout elapses. The outcome is a typed result rather than an exception
so callers decide how a timeout is reported and cleaned up.
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ready(Generic[T]):
    """The probe produced a value."""

    value: T
    attempts: int


@dataclass(frozen=True)
class TimedOut:
    """The probe never produced a value within the bound."""

    timeout: float
    attempts: int


def wait_for(
    probe: Callable[[], T | None],
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Ready[T] | TimedOut:
    """
    Poll probe until it returns something other than None.

    The probe runs ceil(timeout / interval) times (at least once), with
    interval seconds between attempts. Exceptions raised by the probe
    propagate unchanged.

    Args:
        probe: Callable returning a value when the condition holds, else None
        timeout: Upper bound on the total wait in seconds
        interval: Seconds between attempts
        sleep: Sleep function (injectable for tests)

    Returns:
        Ready with the value, or TimedOut
    """
    attempts = max(1, math.ceil(timeout / interval)) if interval > 0 else 1

    for attempt in range(1, attempts + 1):
        value = probe()
        if value is not None:
            return Ready(value=value, attempts=attempt)
        if attempt < attempts:
            sleep(interval)

    return TimedOut(timeout=timeout, attempts=attempts)
