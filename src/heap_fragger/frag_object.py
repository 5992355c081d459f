from __future__ import annotations

import sys
from array import array
from typing import Optional

WORD_BYTES = 8


class FragObject:
    """
    The unit of churn: a fixed-size payload plus two reference slots.

    ref_a marks an object as anchored (it survives a prune when non-null).
    ref_b is relinked on every shuffle and never decides survival. The payload
    is only allocated, never read; it exists to occupy a controlled amount of
    heap.
    """

    __slots__ = ("ref_a", "ref_b", "payload")

    def __init__(self, payload_words: int = 0) -> None:
        self.ref_a: Optional[object] = None
        self.ref_b: Optional[object] = None
        self.payload: Optional[array] = None
        if payload_words > 0:
            self.payload = array("q", bytes(payload_words * WORD_BYTES))

    @property
    def anchored(self) -> bool:
        return self.ref_a is not None


def estimated_overhead() -> int:
    """Bytes one FragObject costs beyond its payload words."""
    return sys.getsizeof(FragObject()) + sys.getsizeof(array("q"))


def payload_words_for(object_size: int, overhead: Optional[int] = None) -> int:
    """Payload length that makes a FragObject weigh roughly object_size bytes."""
    if overhead is None:
        overhead = estimated_overhead()
    return max(0, (object_size - overhead) // WORD_BYTES)
