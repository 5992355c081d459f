from __future__ import annotations

import gc
import os
import sys
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import psutil

from .baseline import BaselineRetainedSet
from .cancellation import CancellationToken, Cancelled
from .collection_observer import CollectionObserver, PromotionResult, WeakRefCollectionObserver
from .config import MB, FraggerConfig
from .frag_object import FragObject, estimated_overhead, payload_words_for
from .generation_store import GenerationStore
from .locks import WrappingCounter
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from experiments.instrumentation import FraggerProfiler


def target_object_count(budget_bytes: int, object_size: int) -> int:
    """How many objects of object_size fit in one increment's budget."""
    if object_size <= 0:
        raise ValueError("object_size must be positive")
    return max(0, budget_bytes // object_size)


def next_object_size(object_size: int, multiplier: float, increment: int) -> int:
    return int(object_size * multiplier) + increment


class FragmentationEngine:
    """
    Drives the allocate -> age -> prune -> reshuffle cycle over a ring of
    generation stores, growing the object size with every increment so that
    new objects are unlikely to fit the holes left by earlier prunes.
    """

    def __init__(
        self,
        config: FraggerConfig,
        *,
        observer: Optional[CollectionObserver] = None,
        baseline: Optional[BaselineRetainedSet] = None,
        token: Optional[CancellationToken] = None,
        profiler: Optional["FraggerProfiler"] = None,
        allocation_limiter: Optional[RateLimiter] = None,
        prune_limiter: Optional[RateLimiter] = None,
        shuffle_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self.config = config.resolve()
        self.token = token or CancellationToken()
        self.profiler = profiler
        self.baseline = baseline if baseline is not None else BaselineRetainedSet()
        self.allocation_limiter = allocation_limiter or self._make_limiter(config.alloc_mb_per_sec * MB)
        self.prune_limiter = prune_limiter or self._make_limiter(config.prune_ops_per_sec)
        self.shuffle_limiter = shuffle_limiter or self._make_limiter(config.shuffle_ops_per_sec)
        self.observer = observer or WeakRefCollectionObserver(
            self.allocation_limiter, token=self.token, profiler=profiler
        )
        self.object_overhead = (
            config.object_overhead_bytes if config.object_overhead_bytes is not None else estimated_overhead()
        )
        self._store_selector = WrappingCounter()
        self.stores: List[GenerationStore] = []
        self.passes_completed = 0
        self.pass_summaries: List[Dict[str, Any]] = []
        self.init_stores()

    def _make_limiter(self, work_per_sec: float) -> RateLimiter:
        log = self.profiler.log if self.profiler else sys.stdout
        return RateLimiter(
            work_per_sec,
            interval_ms=self.config.yield_ms,
            max_credit_ms=self.config.max_yield_credit_ms,
            reports_every=self.config.yields_between_reports,
            verbose=self.config.verbose,
            log=log,
            token=self.token,
        )

    def init_stores(self) -> None:
        self.stores = [
            GenerationStore(self.config.store_shard_count) for _ in range(self.config.num_store_increments)
        ]

    # -- Sampling ------------------------------------------------------------------
    def sample(self) -> Optional[FragObject]:
        """Some object from the stores, round-robin across increments; may be None."""
        stores = self.stores
        if not stores:
            return None
        return stores[self._store_selector.next() % len(stores)].sample()

    def _sample_any(self) -> Optional[FragObject]:
        for _ in range(len(self.stores)):
            target = self.sample()
            if target is not None:
                return target
        return None

    # -- Phases --------------------------------------------------------------------
    def allocate(self, store: GenerationStore, object_size: int) -> int:
        count = target_object_count(self.config.increment_budget_bytes, object_size)
        words = payload_words_for(object_size, self.object_overhead)
        prune_ratio = self.config.prune_ratio
        for i in range(count):
            obj = FragObject(words)
            target = self.sample()
            if i % prune_ratio == 0:
                if target is None:
                    target = self._sample_any()
                # Anchoring decides survival, so it never falls through on a miss.
                obj.ref_a = target if target is not None else obj
            obj.ref_b = target
            store.append(obj)
            self.allocation_limiter.consume(object_size)
        return count

    def age(self) -> PromotionResult:
        result = self.observer.wait_for_promotion()
        if not result.detected:
            self._say(
                f"heap_fragger: Promotion not confirmed after {result.cycles} cycles; pruning anyway."
            )
            self._record("promotion_exhausted", {"cycles": result.cycles})
        return result

    def prune(self, store: GenerationStore) -> int:
        return store.prune(
            self.prune_limiter,
            self.baseline,
            anchor_links=self.config.anchor_links_per_survivor,
            work_per_survivor=self.config.prune_ratio,
        )

    def shuffle_all_links(self) -> int:
        """Relink every current object to freshly sampled survivors; return objects touched."""
        touched = 0
        for store in self.stores:
            for shard in store.shards():
                for obj in shard:
                    obj.ref_a = self.sample()
                    obj.ref_b = self.sample()
                    self.shuffle_limiter.consume(2)
                    touched += 1
        return touched

    # -- Passes --------------------------------------------------------------------
    def do_pass(self, increment: int, object_size: int) -> Dict[str, Any]:
        store = self.stores[increment]
        store.reset()

        self._say(
            f"\nheap_fragger: Pass Increment #{increment} (of 0..{len(self.stores) - 1}): Making "
            f"{target_object_count(self.config.increment_budget_bytes, object_size)} Objects of size {object_size}"
        )
        allocated = self.allocate(store, object_size)

        self._say("\nheap_fragger: Waiting for promotion: ")
        promotion = self.age()
        if promotion.detected:
            self._say("heap_fragger: Promotion detected.")

        self._say(f"\nheap_fragger: Pruning frag pass by prune ratio {self.config.prune_ratio}")
        survivors = self.prune(store)

        self._say("\nheap_fragger: Connecting surviving links.")
        relinked = self.shuffle_all_links()

        summary = {
            "increment": increment,
            "object_size": object_size,
            "allocated": allocated,
            "survivors": survivors,
            "relinked": relinked,
            "promotion_cycles": promotion.cycles,
            "promotion_detected": promotion.detected,
            "sample_misses": sum(s.misses for s in self.stores),
            "rss_mb": psutil.Process(os.getpid()).memory_info().rss / MB,
        }
        self.pass_summaries.append(summary)
        self._record("increment_complete", summary)
        return summary

    def frag(self) -> None:
        """One outer pass over every increment, starting from fresh stores."""
        self._say(
            f"heap_fragger: Estimated Heap {self.config.estimated_heap_mb} MB, "
            f"Starting fragger pass with {self.config.num_store_increments} increments."
        )
        self.init_stores()
        self.baseline.clear_target_refs()
        if self.config.full_gc_between_passes:
            gc.collect()

        object_size = self.config.initial_object_size
        for increment in range(self.config.num_store_increments):
            self.do_pass(increment, object_size)
            object_size = next_object_size(
                object_size, self.config.size_multiplier, self.config.size_increment
            )

    def run(self, max_passes: Optional[int] = None) -> int:
        """Repeat outer passes until cancelled (or max_passes); return passes completed."""
        try:
            while max_passes is None or self.passes_completed < max_passes:
                self.token.raise_if_cancelled()
                self._say(f"\nStarting a heap_fragger pass {self.passes_completed} ...")
                self.frag()
                self.passes_completed += 1
        except Cancelled:
            self._say("heap_fragger: Interrupted, exiting...")
        finally:
            self.stores = []
        self._say("\nheap_fragger Done...")
        return self.passes_completed

    # -- Reporting -----------------------------------------------------------------
    def _say(self, message: str) -> None:
        if self.profiler:
            self.profiler.say(message)

    def _record(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.profiler:
            self.profiler.record_event(event_type, payload)
