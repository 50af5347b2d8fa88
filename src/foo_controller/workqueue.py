"""Deduplicating, rate-limited work queue of Foo keys.

The queue guarantees that a key is never held twice and never handed to two
workers at once: a key added while it is being processed is parked in the
``dirty`` set and redelivered once the worker calls :meth:`RateLimitingQueue.done`.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Hashable

import structlog

from foo_controller.metrics import METRICS

logger = structlog.get_logger(__name__)

# 2**exp beyond this point is always larger than any sensible max delay.
_MAX_EXPONENT = 62


class ItemExponentialFailureRateLimiter:
    """Per-item exponential backoff: ``base_delay * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        """Record a failure for ``item`` and return how long to wait before retrying it."""
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1
        if exp > _MAX_EXPONENT:
            return self._max_delay
        return min(self._base_delay * (2**exp), self._max_delay)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class RateLimitingQueue:
    """Work queue with dedup, at-most-one-active-per-key, delayed and rate-limited adds.

    Parameters
    ----------
    rate_limiter:
        Backoff policy used by :meth:`add_rate_limited`.
    name:
        Used in log lines and thread names.
    """

    def __init__(
        self,
        rate_limiter: ItemExponentialFailureRateLimiter | None = None,
        name: str = "foo",
    ) -> None:
        self._rate_limiter = rate_limiter or ItemExponentialFailureRateLimiter()
        self._name = name

        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._shutting_down = False

        # Delayed adds share one waiting thread; a heap keeps the next due item on top.
        self._waiting_cond = threading.Condition()
        self._waiting_heap: list[tuple[float, int, Hashable]] = []
        self._waiting_ready_at: dict[Hashable, float] = {}
        self._waiting_seq = itertools.count()
        self._waiting_thread: threading.Thread | None = None

    # -- basic queue ------------------------------------------------------------

    def add(self, item: Hashable) -> None:
        """Mark ``item`` as needing processing."""
        with self._cond:
            if self._shutting_down:
                return
            if item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                # Redelivered by done()
                return
            self._queue.append(item)
            METRICS.queue_depth.set(len(self._queue))
            self._cond.notify()

    def get(self) -> tuple[Hashable | None, bool]:
        """Block until an item is available.

        Returns ``(item, False)``, or ``(None, True)`` once the queue is shut down.
        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if self._shutting_down:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            METRICS.queue_depth.set(len(self._queue))
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark ``item`` as processed; requeue it if it was re-added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                METRICS.queue_depth.set(len(self._queue))
                self._cond.notify()

    def shut_down(self) -> None:
        """Wake every blocked :meth:`get` and refuse further adds."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._waiting_cond:
            self._waiting_cond.notify_all()
        logger.debug("workqueue_shut_down", queue=self._name)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    # -- delayed adds -----------------------------------------------------------

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add ``item`` once ``delay`` seconds have passed.

        A pending delayed add for the same item keeps the earlier deadline.
        """
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = time.monotonic() + delay
        with self._waiting_cond:
            current = self._waiting_ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._waiting_ready_at[item] = ready_at
            heapq.heappush(self._waiting_heap, (ready_at, next(self._waiting_seq), item))
            self._ensure_waiting_thread()
            self._waiting_cond.notify_all()

    def _ensure_waiting_thread(self) -> None:
        if self._waiting_thread is None:
            self._waiting_thread = threading.Thread(
                target=self._waiting_loop,
                daemon=True,
                name=f"{self._name}-delayed-adds",
            )
            self._waiting_thread.start()

    def _waiting_loop(self) -> None:
        while True:
            with self._waiting_cond:
                # shut_down() sets the flag before taking _waiting_cond to notify,
                # so checking it under the lock cannot miss the wake-up.
                if self._shutting_down:
                    return
                ready = self._pop_ready(time.monotonic())
                if not ready:
                    timeout = None
                    if self._waiting_heap:
                        timeout = max(self._waiting_heap[0][0] - time.monotonic(), 0.0)
                    self._waiting_cond.wait(timeout=timeout)
                    continue
            for item in ready:
                self.add(item)

    def _pop_ready(self, now: float) -> list[Hashable]:
        ready: list[Hashable] = []
        while self._waiting_heap and self._waiting_heap[0][0] <= now:
            ready_at, _, item = heapq.heappop(self._waiting_heap)
            # Superseded by an earlier deadline that already fired
            if self._waiting_ready_at.get(item) != ready_at:
                continue
            del self._waiting_ready_at[item]
            ready.append(item)
        return ready

    # -- rate limiting ----------------------------------------------------------

    def add_rate_limited(self, item: Hashable) -> None:
        """Requeue ``item`` after its current backoff delay."""
        self.add_after(item, self._rate_limiter.when(item))

    def forget(self, item: Hashable) -> None:
        """Stop tracking failures for ``item`` (resets its backoff)."""
        self._rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self._rate_limiter.num_requeues(item)
