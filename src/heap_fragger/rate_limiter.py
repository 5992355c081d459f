from __future__ import annotations

import sys
import time
from typing import Callable, Optional, TextIO

from .cancellation import CancellationToken


class RateLimiter:
    """
    Token-bucket throttle for work units (bytes, objects, link updates).

    consume() spends credit; once credit is exhausted the caller sleeps in
    sampling-interval steps and is re-credited for the elapsed time, capped at
    max_credit_ms so a long stall cannot turn into a long burst.
    """

    def __init__(
        self,
        work_per_sec: float,
        *,
        interval_ms: float = 5,
        max_credit_ms: float = 30,
        reports_every: int = 20,
        verbose: bool = False,
        log: Optional[TextIO] = None,
        token: Optional[CancellationToken] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if work_per_sec <= 0:
            raise ValueError("work_per_sec must be positive")
        self.work_per_sec = work_per_sec
        self.interval_ms = interval_ms
        self.max_credit_ms = max_credit_ms
        self.reports_every = max(1, reports_every)
        self.verbose = verbose
        self.log = log or sys.stdout
        self.token = token or CancellationToken()
        self._clock = clock
        self.credit = 0.0
        self.yield_count = 0
        self._last_refill = clock()

    def consume(self, amount: float) -> None:
        self.credit -= amount
        while self.credit <= 0:
            self.token.sleep(self.interval_ms / 1000.0)

            now = self._clock()
            elapsed_ms = (now - self._last_refill) * 1000.0
            self._last_refill = now
            self.credit += min(elapsed_ms, self.max_credit_ms) * self.work_per_sec / 1000.0

            if self.yield_count % self.reports_every == 0 and self.verbose:
                self.log.write(".")
                self.log.flush()
            self.yield_count += 1
