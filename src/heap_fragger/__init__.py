"""
Heap fragmentation inducer for garbage-collected runtimes.

Repeatedly allocates large sets of objects of a given size, waits for them to
be promoted, prunes each set down to a small live remainder and grows the
object size between increments, so that later objects are unlikely to fit the
holes freed by earlier ones without some amount of compaction.
"""

from .active_reader import ActiveReader
from .baseline import BaselineRetainedSet
from .cancellation import CancellationToken, Cancelled, SupervisedTask
from .collection_observer import CollectionObserver, PromotionResult, WeakRefCollectionObserver
from .config import FraggerConfig
from .engine import FragmentationEngine
from .frag_object import FragObject
from .generation_store import GenerationStore
from .pause_detector import PauseDetector
from .rate_limiter import RateLimiter

__all__ = [
    "ActiveReader",
    "BaselineRetainedSet",
    "CancellationToken",
    "Cancelled",
    "CollectionObserver",
    "FraggerConfig",
    "FragmentationEngine",
    "FragObject",
    "GenerationStore",
    "PauseDetector",
    "PromotionResult",
    "RateLimiter",
    "SupervisedTask",
    "WeakRefCollectionObserver",
]
