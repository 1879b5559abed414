"""Deduplicating work queue of tenants to reconcile."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import timedelta

__all__ = ["WorkQueue"]

_MAX_BACKOFF_EXPONENT = 30
"""Cap on the backoff exponent, so the delay computation cannot overflow."""


class WorkQueue:
    """Queue of tenant keys waiting to be reconciled.

    Keys are ``namespace/name`` strings. A key is present in the queue at
    most once no matter how many times it is added, and a key that has been
    handed to a worker by `get` is not handed to another worker until the
    first calls `done`. A key added while it is being processed is queued
    again when processing finishes, so that no change is lost.

    Retries of failed keys are delayed with exponential backoff, tracked per
    key until `forget` is called.

    Parameters
    ----------
    backoff_base
        Delay before the first retry of a failing key.
    backoff_max
        Upper bound on the delay between retries.
    """

    def __init__(
        self, *, backoff_base: timedelta, backoff_max: timedelta
    ) -> None:
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._failures: dict[str, int] = {}
        self._ready = asyncio.Event()
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_shutdown(self) -> bool:
        """Whether `shutdown` has been called."""
        return self._shutdown

    def add(self, key: str) -> None:
        """Queue a key for processing.

        Does nothing if the key is already queued. If the key is currently
        being processed, it is queued once processing finishes.

        Parameters
        ----------
        key
            Key to add.
        """
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._ready.set()

    def add_after(self, key: str, delay: timedelta) -> None:
        """Queue a key after a delay.

        If the key already has a delayed add pending, whichever of the two
        is due first wins.

        Parameters
        ----------
        key
            Key to add.
        delay
            How long to wait before adding the key.
        """
        if self._shutdown:
            return
        seconds = delay.total_seconds()
        if seconds <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        timer = self._timers.get(key)
        if timer:
            if timer.when() <= loop.time() + seconds:
                return
            timer.cancel()
        self._timers[key] = loop.call_later(seconds, self._fire, key)

    def add_rate_limited(self, key: str) -> timedelta:
        """Queue a key after its next backoff delay.

        Each call without an intervening `forget` doubles the delay, up to
        the configured maximum.

        Parameters
        ----------
        key
            Key to add.

        Returns
        -------
        datetime.timedelta
            Delay before the key will be processed again.
        """
        failures = self._failures.get(key, 0) + 1
        self._failures[key] = failures
        exponent = min(failures - 1, _MAX_BACKOFF_EXPONENT)
        delay = min(self._backoff_base * 2**exponent, self._backoff_max)
        self.add_after(key, delay)
        return delay

    def cancel(self, key: str) -> None:
        """Drop all pending work for a key.

        Removes the key from the queue, cancels any delayed add, and resets
        its backoff. Processing of the key already in progress is not
        interrupted.

        Parameters
        ----------
        key
            Key to drop.
        """
        if key in self._dirty and key not in self._processing:
            self._queue.remove(key)
        self._dirty.discard(key)
        timer = self._timers.pop(key, None)
        if timer:
            timer.cancel()
        self._failures.pop(key, None)

    def done(self, key: str) -> None:
        """Mark processing of a key as finished.

        Parameters
        ----------
        key
            Key returned by `get`.
        """
        self._processing.discard(key)
        if key in self._dirty and not self._shutdown:
            self._queue.append(key)
            self._ready.set()

    def forget(self, key: str) -> None:
        """Reset the backoff of a key after it was processed successfully.

        Parameters
        ----------
        key
            Key to reset.
        """
        self._failures.pop(key, None)

    async def get(self) -> str | None:
        """Wait for the next key to process.

        The caller must call `done` with the key once processing finishes.

        Returns
        -------
        str or None
            Next key, or `None` once the queue has been shut down.
        """
        while not self._queue and not self._shutdown:
            self._ready.clear()
            await self._ready.wait()
        if self._shutdown:
            return None
        key = self._queue.popleft()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def num_requeues(self, key: str) -> int:
        """Number of rate-limited retries of a key since its last success."""
        return self._failures.get(key, 0)

    def shutdown(self) -> None:
        """Stop handing out keys and wake up all waiting workers."""
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._ready.set()

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self.add(key)
