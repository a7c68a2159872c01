"""Cancellable wait loops for signals produced outside the process."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from artifact_pipeline.errors import PipelineInterrupted

_STOP_CHECK_SECONDS = 0.1


def interruption(stop_requested: Callable[[], bool] | None) -> PipelineInterrupted:
    """Build the interrupt error, naming the signal recorded on the stop flag if any."""

    return PipelineInterrupted(getattr(stop_requested, "signal_name", None) or "SIGINT")


class PollTimeoutError(RuntimeError):
    """Bounded wait ran out of attempts."""

    def __init__(self, label: str, attempts: int, interval_seconds: float) -> None:
        super().__init__(
            f"{label}: no signal after {attempts} attempts "
            f"({attempts * interval_seconds:.0f}s)",
        )
        self.label = label
        self.attempts = attempts


@dataclass(slots=True, frozen=True)
class PollPolicy:
    """How to wait: interval, optional bound, and a settle delay after success.

    ``max_attempts=None`` waits forever; only a stop request ends the wait.
    """

    interval_seconds: float
    max_attempts: int | None = None
    settle_seconds: float = 0.0
    label: str = "wait"


def sleep_with_stop(
    seconds: float,
    stop_requested: Callable[[], bool] | None,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Sleep in small slices so a stop request is noticed quickly."""

    slept = 0.0
    while slept < seconds:
        if stop_requested is not None and stop_requested():
            raise interruption(stop_requested)
        chunk = min(_STOP_CHECK_SECONDS, seconds - slept)
        sleep(chunk)
        slept += chunk


def poll_until(
    check: Callable[[], bool],
    policy: PollPolicy,
    *,
    stop_requested: Callable[[], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Call ``check`` until it returns true; return the number of attempts used.

    Raises PollTimeoutError when the bound is exceeded and PipelineInterrupted
    when ``stop_requested`` turns true.
    """

    attempts = 0
    while True:
        if stop_requested is not None and stop_requested():
            raise interruption(stop_requested)
        attempts += 1
        if check():
            if policy.settle_seconds > 0:
                sleep_with_stop(policy.settle_seconds, stop_requested, sleep=sleep)
            return attempts
        if policy.max_attempts is not None and attempts >= policy.max_attempts:
            raise PollTimeoutError(policy.label, attempts, policy.interval_seconds)
        sleep_with_stop(policy.interval_seconds, stop_requested, sleep=sleep)


class StopFlag:
    """Shared cancellation flag; calling it answers "was a stop requested?"."""

    def __init__(self) -> None:
        self.requested = False
        self.signal_name: str | None = None

    def __call__(self) -> bool:
        return self.requested

    def request(self, signal_name: str) -> None:
        self.requested = True
        self.signal_name = signal_name
