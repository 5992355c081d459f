from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import psutil

MB = 1024 * 1024


def estimate_heap_mb() -> int:
    """Best guess at the ceiling the interpreter's heap can grow to."""
    return int(psutil.virtual_memory().total // MB)


@dataclass
class FraggerConfig:
    """
    Tunables for one fragger run.

    Fields left as None are derived by resolve(): the heap estimate comes from
    host memory, the budget from heap_budget_fraction, and the increment count
    from the per-increment peak.
    """

    alloc_mb_per_sec: float = 50.0
    heap_budget_fraction: float = 0.1
    heap_budget_mb: Optional[int] = None
    estimated_heap_mb: Optional[int] = None
    peak_mb_per_increment: Optional[int] = None
    num_store_increments: Optional[int] = None

    prune_ratio: int = 53
    prune_ops_per_sec: float = 2_000_000
    shuffle_ops_per_sec: float = 20_000_000
    anchor_links_per_survivor: int = 100
    yield_ms: float = 5
    max_yield_credit_ms: float = 30
    yields_between_reports: int = 20

    pause_threshold_ms: float = 350

    initial_object_size: int = 96
    object_overhead_bytes: Optional[int] = None
    size_multiplier: float = 1.0
    size_increment: int = 32

    store_shard_count: int = 101
    heap_mb_to_sit_on: int = 100
    full_gc_between_passes: bool = False
    active_reader: bool = False
    verbose: bool = False
    log_file: Optional[str] = None
    events_dir: Optional[str] = None
    run_time_ms: int = 0

    def resolve(self) -> "FraggerConfig":
        """Fill in derived fields and validate; returns self."""
        if self.alloc_mb_per_sec <= 0:
            raise ValueError("allocation rate must be positive")
        if self.prune_ops_per_sec <= 0 or self.shuffle_ops_per_sec <= 0:
            raise ValueError("prune and shuffle rates must be positive")
        if self.prune_ratio < 1:
            raise ValueError("prune ratio must be at least 1")
        if self.initial_object_size < 1:
            raise ValueError("initial object size must be at least 1 byte")
        if self.size_multiplier < 1.0 or self.size_increment < 0:
            raise ValueError("object size must not shrink between increments")
        if self.store_shard_count < 1:
            raise ValueError("store shard count must be at least 1")
        if self.heap_mb_to_sit_on < 0 or self.run_time_ms < 0:
            raise ValueError("heap to sit on and run time must not be negative")

        if self.estimated_heap_mb is None:
            self.estimated_heap_mb = estimate_heap_mb()
        if self.heap_budget_mb is None:
            if not 0.0 < self.heap_budget_fraction <= 1.0:
                raise ValueError("heap budget fraction must be in (0, 1]")
            self.heap_budget_mb = int(self.estimated_heap_mb * self.heap_budget_fraction)
        if self.peak_mb_per_increment is None:
            self.peak_mb_per_increment = self.heap_budget_mb // 2
        if self.peak_mb_per_increment < 1:
            raise ValueError(
                f"heap budget of {self.heap_budget_mb} MB leaves nothing to allocate per increment"
            )
        if self.num_store_increments is None:
            # ~1.5x the pass count needed to cycle through the whole heap.
            self.num_store_increments = int(self.estimated_heap_mb * 1.5 / self.peak_mb_per_increment) + 1
        if self.num_store_increments < 1:
            raise ValueError("at least one store increment is required")
        return self

    @property
    def increment_budget_bytes(self) -> int:
        return (self.peak_mb_per_increment or 0) * MB
