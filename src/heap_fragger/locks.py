from __future__ import annotations

import threading
from contextlib import contextmanager

COUNTER_WRAP = 1_999_999_999


class WrappingCounter:
    """
    Thread-safe increment-and-get counter that restarts from zero once it
    passes COUNTER_WRAP, so modulo arithmetic on it never sees huge values.
    """

    def __init__(self, wrap_at: int = COUNTER_WRAP) -> None:
        self._wrap_at = wrap_at
        self._value = 0
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            if self._value > self._wrap_at:
                self._value = 0
            value = self._value
            self._value += 1
            return value

    def reset(self) -> None:
        with self._lock:
            self._value = 0

    @property
    def value(self) -> int:
        return self._value


class ReadWriteLock:
    """
    Many concurrent readers or one writer. Waiting writers block new readers
    so a steady stream of readers cannot starve a writer.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_lock(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_lock(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()
