from __future__ import annotations

import gc
import tracemalloc
from typing import Callable, List, Optional

from .frag_object import FragObject
from .locks import ReadWriteLock, WrappingCounter

MB = 1024 * 1024


def measure_object_footprint(sample_count: int = 10_000) -> float:
    """
    Measure what one payload-free FragObject really costs, list slot included,
    by tracing allocations while building a throwaway list of them.
    """
    already_tracing = tracemalloc.is_tracing()
    if not already_tracing:
        tracemalloc.start()
    try:
        gc.collect()
        before, _ = tracemalloc.get_traced_memory()
        sample = [FragObject() for _ in range(sample_count)]
        after, _ = tracemalloc.get_traced_memory()
        del sample
    finally:
        if not already_tracing:
            tracemalloc.stop()
    return max(1.0, (after - before) / sample_count)


class BaselineRetainedSet:
    """
    Static live set allocated once at startup to add background occupancy.

    During prune, baseline objects get their ref_a pointed at survivors, which
    keeps survivors reachable from outside the churn graph. next_target() is
    safe to call from several threads at once; populate() and
    clear_target_refs() take the write side of the lock.
    """

    def __init__(self, footprint: Optional[Callable[[], float]] = None) -> None:
        self._footprint = footprint or measure_object_footprint
        self._lock = ReadWriteLock()
        self._bucket_selector = WrappingCounter()
        self.buckets: List[List[FragObject]] = [[FragObject()]]
        self._positions: List[WrappingCounter] = [WrappingCounter()]
        self.bytes_per_object: Optional[float] = None

    def populate(self, megabytes: int) -> int:
        """Allocate roughly `megabytes` MB of small objects; return the object count."""
        if megabytes <= 0:
            return 0
        self.bytes_per_object = self._footprint()
        per_bucket = max(1, int(MB / self.bytes_per_object))
        buckets = [[FragObject() for _ in range(per_bucket)] for _ in range(megabytes)]
        with self._lock.write_lock():
            self.buckets = buckets
            self._positions = [WrappingCounter() for _ in buckets]
            self._bucket_selector.reset()
        gc.collect()
        return per_bucket * megabytes

    def next_target(self) -> FragObject:
        with self._lock.read_lock():
            bucket_index = self._bucket_selector.next() % len(self.buckets)
            bucket = self.buckets[bucket_index]
            return bucket[self._positions[bucket_index].next() % len(bucket)]

    def clear_target_refs(self) -> None:
        with self._lock.write_lock():
            for bucket in self.buckets:
                for obj in bucket:
                    obj.ref_a = None
                    obj.ref_b = None

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self.buckets)
