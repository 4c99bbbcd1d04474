"""Ordered one-shot continuation queue used during connection transitions."""

from __future__ import annotations

import threading
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")


class HandlerQueue(Generic[T]):
    """FIFO list of handlers that fire once, as a single batch, per transition."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[BaseException | None, T], Any]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def __bool__(self) -> bool:
        return len(self) > 0

    def push(self, handler: Callable[[BaseException | None, T], Any]) -> None:
        """Append a handler to the back of the queue."""

        with self._lock:
            self._handlers.append(handler)

    def drain(self, error: BaseException | None, subject: T) -> int:
        """Fire every queued handler with ``(error, subject)`` and empty the queue.

        The pending list is swapped out before any handler runs, so handlers
        registered while the batch is firing stay queued for the next drain.
        Returns the number of handlers fired.
        """

        batch = self.take()
        for handler in batch:
            handler(error, subject)
        return len(batch)

    def take(self) -> list[Callable[[BaseException | None, T], Any]]:
        """Empty the queue and return its handlers without firing them."""

        with self._lock:
            batch, self._handlers = self._handlers, []
        return batch

    def clear(self) -> None:
        with self._lock:
            self._handlers = []


__all__ = ["HandlerQueue"]
