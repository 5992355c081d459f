from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional

from .frag_object import FragObject
from .locks import WrappingCounter

if TYPE_CHECKING:
    from .baseline import BaselineRetainedSet
    from .rate_limiter import RateLimiter


class GenerationStore:
    """
    Sharded container for the objects of one allocation increment.

    Appends spread over shards by counter modulo, so concurrent appenders only
    ever contend on one shard lock. Reads walk independent round-robin
    counters. Prune and reset replace shard lists instead of mutating them,
    which lets a concurrent reader keep using the list it already picked up.
    """

    def __init__(self, shard_count: int = 101) -> None:
        if shard_count < 1:
            raise ValueError("shard_count must be at least 1")
        self.shard_count = shard_count
        self._shard_locks = [threading.Lock() for _ in range(shard_count)]
        self._exclusive = threading.Lock()
        self._append_counter = WrappingCounter()
        self._shard_selector = WrappingCounter()
        self._positions = [WrappingCounter() for _ in range(shard_count)]
        self._shards: List[List[FragObject]] = [[] for _ in range(shard_count)]
        self._miss_counter = WrappingCounter()
        self.reset()

    # -- Lifecycle -----------------------------------------------------------------
    def reset(self) -> None:
        """Drop all contents; every shard holds a single unanchored placeholder."""
        with self._exclusive:
            for index in range(self.shard_count):
                with self._shard_locks[index]:
                    self._shards[index] = [FragObject()]
                self._positions[index].reset()
            self._append_counter.reset()
            self._shard_selector.reset()
            self._miss_counter.reset()

    def append(self, obj: FragObject) -> None:
        index = self._append_counter.next() % self.shard_count
        with self._shard_locks[index]:
            self._shards[index].append(obj)

    def sample(self) -> Optional[FragObject]:
        """
        Return some current member, or None when the chosen shard is empty
        (e.g. right after a prune left nothing anchored in it).
        """
        index = self._shard_selector.next() % self.shard_count
        with self._shard_locks[index]:
            shard = self._shards[index]
            if not shard:
                self._miss_counter.next()
                return None
            return shard[self._positions[index].next() % len(shard)]

    @property
    def misses(self) -> int:
        return self._miss_counter.value

    def prune(
        self,
        limiter: "RateLimiter",
        baseline: Optional["BaselineRetainedSet"] = None,
        *,
        anchor_links: int = 100,
        work_per_survivor: int = 1,
    ) -> int:
        """Keep only anchored objects; return how many survived."""
        survivors_total = 0
        with self._exclusive:
            for index in range(self.shard_count):
                survivors: List[FragObject] = []
                for obj in self._shards[index]:
                    if obj.ref_a is None:
                        continue
                    survivors.append(obj)
                    if baseline is not None:
                        for _ in range(anchor_links):
                            baseline.next_target().ref_a = obj
                    limiter.consume(work_per_survivor)
                with self._shard_locks[index]:
                    self._shards[index] = survivors
                survivors_total += len(survivors)
        return survivors_total

    # -- Introspection -------------------------------------------------------------
    def shards(self) -> List[List[FragObject]]:
        """Snapshot of the current shard lists."""
        return list(self._shards)

    def __iter__(self) -> Iterator[FragObject]:
        for shard in self.shards():
            yield from shard

    def __len__(self) -> int:
        return sum(len(shard) for shard in self._shards)

    def __contains__(self, obj: object) -> bool:
        return any(member is obj for member in self)

    def stats(self) -> Dict[str, int]:
        sizes = [len(shard) for shard in self._shards]
        return {
            "objects": sum(sizes),
            "empty_shards": sum(1 for size in sizes if size == 0),
            "largest_shard": max(sizes),
            "misses": self.misses,
        }
