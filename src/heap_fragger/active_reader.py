from __future__ import annotations

from typing import Optional

from .cancellation import CancellationToken, SupervisedTask
from .engine import FragmentationEngine


class ActiveReader(SupervisedTask):
    """
    Keeps sampling random objects from the engine's stores to add concurrent
    read and root-scanning pressure. Misses and errors are counted, never
    raised: a store may be mid-reset at any moment.
    """

    name = "heap_fragger-active-reader"

    def __init__(self, engine: FragmentationEngine, token: Optional[CancellationToken] = None) -> None:
        super().__init__(token or engine.token)
        self.engine = engine
        self.reads = 0
        self.misses = 0
        self.errors = 0
        self._last_read: Optional[object] = None

    def read_once(self) -> None:
        try:
            obj = self.engine.sample()
        except Exception:
            self.errors += 1
            return
        if obj is None:
            self.misses += 1
            return
        self._last_read = obj.ref_b
        self.reads += 1

    def run_task(self) -> None:
        while not self.token.cancelled:
            self.read_once()
        self._last_read = None
