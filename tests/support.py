import queue
from typing import List

from heap_fragger import CollectionObserver, FraggerConfig, PromotionResult


class RecordingLimiter:
    """Stands in for RateLimiter where tests must not sleep."""

    def __init__(self) -> None:
        self.consumed: List[float] = []

    def consume(self, amount: float) -> None:
        self.consumed.append(amount)


class MockObserver(CollectionObserver):
    def __init__(self, detected: bool = True, cycles: int = 1) -> None:
        self.detected = detected
        self.cycles = cycles
        self.cycle_calls = 0
        self.detect_calls = 0

    def wait_for_cycle(self) -> int:
        self.cycle_calls += 1
        return 0

    def detect_promotion(self) -> PromotionResult:
        self.detect_calls += 1
        return PromotionResult(cycles=self.cycles, detected=self.detected)


class TickingClock:
    def __init__(self, step: float) -> None:
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


class NeverReclaimedChannel:
    """Notification channel that never yields: nothing ever gets reclaimed."""

    def put(self, item: object) -> None:
        pass

    def get_nowait(self) -> object:
        raise queue.Empty


class AlwaysReclaimedChannel:
    """Yields exactly one notification per drain, as if every discard was reclaimed."""

    def __init__(self) -> None:
        self._ready = True

    def put(self, item: object) -> None:
        pass

    def get_nowait(self) -> object:
        if self._ready:
            self._ready = False
            return 0
        self._ready = True
        raise queue.Empty


def small_config(**overrides) -> FraggerConfig:
    values = dict(
        estimated_heap_mb=64,
        peak_mb_per_increment=1,
        num_store_increments=3,
        initial_object_size=4096,
        store_shard_count=7,
        heap_mb_to_sit_on=0,
        anchor_links_per_survivor=2,
    )
    values.update(overrides)
    return FraggerConfig(**values)
