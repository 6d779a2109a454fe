"""Readiness polling.

A timeout is a normal outcome here, not an exception: the caller decides
whether it is fatal.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from utils.logger import sys_logger


@dataclass
class ReadinessCondition:
    description: str
    check: Callable[[], bool]
    interval_seconds: float
    timeout_seconds: float


@dataclass
class WaitResult:
    ready: bool
    attempts: int = 0
    elapsed_seconds: float = 0.0

    @property
    def timed_out(self) -> bool:
        return not self.ready


class ReadinessWaiter:
    """Evaluates a condition until it holds or its timeout elapses."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        on_attempt: Optional[Callable[[int, float], None]] = None,
    ):
        """
        Args:
            clock: Monotonic time source in seconds.
            sleep: Blocking sleep. Tests pass a fake that advances the clock.
            on_attempt: Optional callback called with (attempt, remaining_seconds)
                        after every failed evaluation, for progress reporting.
        """
        self.clock = clock
        self.sleep = sleep
        self.on_attempt = on_attempt

    def wait(self, condition: ReadinessCondition) -> WaitResult:
        start = self.clock()
        attempts = 0

        while True:
            attempts += 1
            if condition.check():
                elapsed = self.clock() - start
                sys_logger.info(f"READY '{condition.description}' after {attempts} attempts ({elapsed:.1f}s)")
                return WaitResult(ready=True, attempts=attempts, elapsed_seconds=elapsed)

            elapsed = self.clock() - start
            remaining = condition.timeout_seconds - elapsed
            if remaining <= 0:
                sys_logger.warning(
                    f"TIMEOUT '{condition.description}' after {attempts} attempts ({elapsed:.1f}s)"
                )
                return WaitResult(ready=False, attempts=attempts, elapsed_seconds=elapsed)

            if self.on_attempt:
                self.on_attempt(attempts, remaining)

            # Never sleep past the deadline
            self.sleep(min(condition.interval_seconds, remaining))
