from __future__ import annotations

import sys
import threading
import traceback
from abc import ABC, abstractmethod
from typing import Optional


class Cancelled(Exception):
    """Raised from a blocking point once the run has been asked to stop."""


class CancellationToken:
    """Shared stop flag for the engine thread and its background tasks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def sleep(self, timeout: float) -> None:
        """Like wait(), but raises Cancelled instead of returning True."""
        if self._event.wait(timeout):
            raise Cancelled()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()


class SupervisedTask(ABC):
    """
    A daemon thread with explicit start/stop handles.

    Subclasses implement run_task(); it should return (or raise Cancelled)
    once the token is cancelled. Any other exception ends the task and is
    kept in `error` for whoever joins it.
    """

    name: str = "task"

    def __init__(self, token: Optional[CancellationToken] = None) -> None:
        self.token = token or CancellationToken()
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

    @abstractmethod
    def run_task(self) -> None:
        ...

    def _run(self) -> None:
        try:
            self.run_task()
        except Cancelled:
            pass
        except Exception as exc:
            self.error = exc
            print(f"{self.name}: task failed", file=sys.stderr)
            traceback.print_exc()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"{self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.token.cancel()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
