"""
Black-box detection of collector activity.

Nothing here asks the collector what it did. A collection cycle is inferred
when an object with no strong references gets reclaimed, and promotion is
inferred when a discarded object is *not* reclaimed although a cycle just
happened. In CPython an acyclic object is freed by reference counting the
moment it is dropped, so every probe and aging candidate is built as a
self-referencing cycle: only the cyclic collector can reclaim it.
"""

from __future__ import annotations

import gc
import queue
import sys
import weakref
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Deque, List, Optional

from .cancellation import CancellationToken
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from experiments.instrumentation import FraggerProfiler

CHURN_SLOTS = 32
CHURN_BYTES = sys.getsizeof([None] * CHURN_SLOTS)
ALLOCS_BETWEEN_PROBES = 1000
PROBE_RING_SIZE = 10_000
AGING_CANDIDATES = 1000
MAX_PROMOTION_CYCLES = 1000
RETAIN_EVERY_WHILE_AGING = 100


@dataclass(frozen=True)
class PromotionResult:
    cycles: int
    detected: bool

    def __add__(self, other: "PromotionResult") -> "PromotionResult":
        # Two trials only count as a detection when both of them agree.
        return PromotionResult(self.cycles + other.cycles, self.detected and other.detected)


class CollectionObserver(ABC):
    """Capability interface consumed by the engine's aging barrier."""

    @abstractmethod
    def wait_for_cycle(self) -> int:
        """Block until some collection cycle has happened."""

    @abstractmethod
    def detect_promotion(self) -> PromotionResult:
        """Block until an object is seen surviving into an older generation."""

    def wait_for_promotion(self) -> PromotionResult:
        """
        Run promotion detection twice. A survivor-space overflow can promote
        an unrelated young object and fake a detection; the chance of that
        happening twice in a row is much lower.
        """
        return self.detect_promotion() + self.detect_promotion()


class _Probe:
    __slots__ = ("cycle", "tag", "__weakref__")

    def __init__(self, tag: int) -> None:
        self.tag = tag
        self.cycle = self


def _make_churn() -> List[object]:
    churn: List[object] = [None] * CHURN_SLOTS
    churn[0] = churn
    return churn


class WeakRefCollectionObserver(CollectionObserver):
    def __init__(
        self,
        limiter: RateLimiter,
        *,
        token: Optional[CancellationToken] = None,
        profiler: Optional["FraggerProfiler"] = None,
        channel_factory: Callable[[], "queue.SimpleQueue"] = queue.SimpleQueue,
        settle_seconds: float = 0.1,
        allocs_between_probes: int = ALLOCS_BETWEEN_PROBES,
        ring_size: int = PROBE_RING_SIZE,
        aging_candidates: int = AGING_CANDIDATES,
        max_promotion_cycles: int = MAX_PROMOTION_CYCLES,
    ) -> None:
        self.limiter = limiter
        self.token = token or limiter.token
        self.profiler = profiler
        self.channel_factory = channel_factory
        self.settle_seconds = settle_seconds
        self.allocs_between_probes = max(1, allocs_between_probes)
        self.ring_size = max(1, ring_size)
        self.aging_candidates = aging_candidates
        self.max_promotion_cycles = max_promotion_cycles
        self.cycles_observed = 0
        # Churn is parked here briefly so each allocation is observable state.
        self._sink: Optional[object] = None

    # -- Collection cycles ---------------------------------------------------------
    def _track_dead_probe(self, channel: "queue.SimpleQueue", tag: int) -> "weakref.ref":
        probe = _Probe(tag)
        return weakref.ref(probe, lambda _ref, tag=tag: channel.put(tag))

    def wait_for_cycle(
        self,
        retention: Optional[List[object]] = None,
        retain_every: int = 32,
    ) -> int:
        if not gc.isenabled() or gc.get_threshold()[0] == 0:
            raise RuntimeError("automatic cyclic garbage collection is off; no cycle can be observed")
        channel = self.channel_factory()
        ring: List[Optional[weakref.ref]] = [None] * self.ring_size
        ring_index = 0
        count = 0
        try:
            while True:
                try:
                    channel.get_nowait()
                    break
                except queue.Empty:
                    pass
                self.token.raise_if_cancelled()

                if count % self.allocs_between_probes == 0:
                    ring[ring_index] = self._track_dead_probe(channel, count)
                    ring_index = (ring_index + 1) % self.ring_size

                self._sink = _make_churn()
                if retention is not None and count % retain_every == 0:
                    retention.append(self._sink)
                self._sink = None

                self.limiter.consume(CHURN_BYTES)
                count += 1

            self.token.sleep(self.settle_seconds)
        finally:
            ring.clear()
        self.cycles_observed += 1
        return count

    # -- Promotion -----------------------------------------------------------------
    def detect_promotion(self) -> PromotionResult:
        channel = self.channel_factory()
        aging: Deque[_Probe] = deque()
        handles: List[weakref.ref] = []
        self._seed_aging_candidates(channel, aging, handles)
        retention: List[object] = []

        count = 0
        detected = False
        try:
            while count < self.max_promotion_cycles:
                # Discard one aging object per cycle, then see whether it was reclaimed.
                if aging:
                    aging.popleft()
                self.wait_for_cycle(retention, RETAIN_EVERY_WHILE_AGING)
                count += 1
                self._say(f"\tPromotionDetector: Detected GC cycle {count}")

                reclaimed = self._drain(channel)
                if not reclaimed:
                    self._say(
                        f"\tPromotionDetector: Detected promotion (found nothing in the aging "
                        f"queue after {count} detected GC cycles)."
                    )
                    detected = True
                    break
                self._say(f"\tPromotionDetector: aging queue reclaimed {reclaimed}")
        finally:
            handles.clear()
            aging.clear()
            retention.clear()

        if not detected:
            self._say(f"\tPromotionDetector: gave up after {count} cycles without a promotion.")
        if self.profiler:
            self.profiler.record_event("promotion_trial", {"cycles": count, "detected": detected})
        return PromotionResult(cycles=count, detected=detected)

    def _seed_aging_candidates(
        self,
        channel: "queue.SimpleQueue",
        aging: Deque[_Probe],
        handles: List[weakref.ref],
    ) -> None:
        # Kept out of detect_promotion so no stray local pins a candidate.
        for tag in range(self.aging_candidates):
            candidate = _Probe(tag)
            aging.append(candidate)
            handles.append(weakref.ref(candidate, lambda _ref, tag=tag: channel.put(tag)))

    @staticmethod
    def _drain(channel: "queue.SimpleQueue") -> List[int]:
        drained: List[int] = []
        while True:
            try:
                drained.append(channel.get_nowait())
            except queue.Empty:
                return drained

    def _say(self, message: str) -> None:
        if self.profiler:
            self.profiler.say(message)
