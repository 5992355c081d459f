from __future__ import annotations

import sys
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable, List, Optional, TextIO

from .cancellation import CancellationToken, SupervisedTask

if TYPE_CHECKING:
    from experiments.instrumentation import FraggerProfiler


class PauseDetector(SupervisedTask):
    """
    Wakes every interval_ms and reports when the gap since the previous wake
    exceeds threshold_ms, an indirect sign of a stop-the-world pause (or of
    the interpreter starving this thread).
    """

    name = "heap_fragger-pause-detector"

    def __init__(
        self,
        interval_ms: float,
        threshold_ms: float,
        *,
        token: Optional[CancellationToken] = None,
        sink: Optional[TextIO] = None,
        profiler: Optional["FraggerProfiler"] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(token)
        self.interval_ms = interval_ms
        self.threshold_ms = threshold_ms
        self.sink = sink or sys.stderr
        self.profiler = profiler
        self._clock = clock
        self.pauses: List[float] = []
        self._last_wake: Optional[float] = None

    def check(self) -> Optional[float]:
        """Record one wake-up; return the gap in ms if it counts as a pause."""
        now = self._clock()
        last, self._last_wake = self._last_wake, now
        if last is None:
            return None
        gap_ms = (now - last) * 1000.0
        if gap_ms <= self.threshold_ms:
            return None
        self.pauses.append(gap_ms)
        self.sink.write(f"\n*** PauseDetector detected a {gap_ms:.0f} ms pause at {datetime.now()} ***\n\n")
        self.sink.flush()
        if self.profiler:
            self.profiler.record_event("pause", {"gap_ms": gap_ms})
        return gap_ms

    def run_task(self) -> None:
        self._last_wake = self._clock()
        while not self.token.wait(self.interval_ms / 1000.0):
            self.check()
