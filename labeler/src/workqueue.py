from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from labeler.src.metrics import METRICS
from labeler.src.model import ObjectKey

LOGGER = logging.getLogger(__name__)

# Beyond this many doublings any sane base has long exceeded the cap.
_MAX_EXPONENT = 62


class ExponentialBackoff:
    """Per-key exponential backoff: ``base * 2**failures``, capped at ``cap``.

    Each call to :meth:`when` counts as one failure for the key, so repeated
    calls return strictly increasing delays until the cap is reached.
    :meth:`forget` resets the key back to the base delay.
    """

    def __init__(self, base_seconds: float = 0.005, cap_seconds: float = 1000.0) -> None:
        if base_seconds <= 0:
            raise ValueError("base_seconds must be > 0")
        if cap_seconds < base_seconds:
            raise ValueError("cap_seconds must be >= base_seconds")
        self.base_seconds = base_seconds
        self.cap_seconds = cap_seconds
        self._failures: dict[ObjectKey, int] = {}
        self._lock = threading.Lock()

    def when(self, key: ObjectKey) -> float:
        with self._lock:
            exponent = self._failures.get(key, 0)
            self._failures[key] = exponent + 1
        if exponent > _MAX_EXPONENT:
            return self.cap_seconds
        return min(self.base_seconds * (2**exponent), self.cap_seconds)

    def num_requeues(self, key: ObjectKey) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: ObjectKey) -> None:
        with self._lock:
            self._failures.pop(key, None)


@dataclass(order=True)
class WorkItem:
    """A key waiting in the delayed set until ``not_before`` (monotonic seconds)."""

    not_before: float
    seq: int
    key: ObjectKey = field(compare=False)
    attempts: int = field(default=0, compare=False)


@dataclass(frozen=True)
class QueueState:
    pending: frozenset[ObjectKey]
    processing: frozenset[ObjectKey]
    delayed: frozenset[ObjectKey]
    dirty: frozenset[ObjectKey]


class WorkQueue:
    """Deduplicating, rate-limited queue of object keys.

    Keys move between three sets:

    ``pending``
        Ready for dispatch, served FIFO by :meth:`get`.
    ``processing``
        Handed to exactly one worker and not yet returned via :meth:`done`.
    ``delayed``
        Waiting for a future deadline set by :meth:`add_after`.

    A key is in at most one set at a time.  Adding a key that is already
    pending or delayed is a no-op.  Adding a key that is being processed
    marks it dirty instead, and a dirty key is put back into ``pending``
    exactly once when its worker calls :meth:`done`.  That is what keeps two
    workers from ever holding the same key.

    Delayed keys are promoted by whichever caller is waiting in :meth:`get`,
    so no timer thread is needed.  A single condition variable guards all
    state.
    """

    def __init__(
        self,
        rate_limiter: ExponentialBackoff | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter or ExponentialBackoff()
        self.clock = clock
        self.logger = logger or LOGGER

        self._cond = threading.Condition()
        self._pending: deque[ObjectKey] = deque()
        self._pending_set: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._dirty: set[ObjectKey] = set()
        # add_after() calls made while the key was processing, applied on done().
        self._parked: dict[ObjectKey, float] = {}
        self._delayed: list[WorkItem] = []
        self._delayed_index: dict[ObjectKey, WorkItem] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._pending)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def state(self) -> QueueState:
        """Return a point-in-time copy of the queue's key sets."""
        with self._cond:
            return QueueState(
                pending=frozenset(self._pending_set),
                processing=frozenset(self._processing),
                delayed=frozenset(self._delayed_index),
                dirty=frozenset(self._dirty),
            )

    def _update_depth(self) -> None:
        METRICS.queue_depth.set(len(self._pending))

    def _add_locked(self, key: ObjectKey) -> bool:
        if self._shutting_down:
            return False
        if key in self._processing:
            self._dirty.add(key)
            return False
        if key in self._pending_set or key in self._delayed_index:
            return False

        self._pending.append(key)
        self._pending_set.add(key)
        METRICS.queue_adds_total.inc()
        self._update_depth()
        self._cond.notify()
        return True

    def _schedule_locked(self, key: ObjectKey, not_before: float) -> None:
        existing = self._delayed_index.get(key)
        if existing is not None and existing.not_before <= not_before:
            return
        item = WorkItem(
            not_before=not_before,
            seq=next(self._seq),
            key=key,
            attempts=self.rate_limiter.num_requeues(key),
        )
        self._delayed_index[key] = item
        heapq.heappush(self._delayed, item)
        # Wake a waiter so it recomputes its timeout against the new deadline.
        self._cond.notify()

    def _promote_due_locked(self, now: float) -> None:
        while self._delayed and self._delayed[0].not_before <= now:
            item = heapq.heappop(self._delayed)
            # Superseded entries stay in the heap until they surface here.
            if self._delayed_index.get(item.key) is not item:
                continue
            del self._delayed_index[item.key]
            if self._add_locked(item.key):
                self.logger.debug(
                    "Delay for %s elapsed after %d failed attempt(s)", item.key, item.attempts
                )

    def add(self, key: ObjectKey) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: ObjectKey, delay: float) -> None:
        """Schedule *key* to become pending after *delay* seconds.

        Never blocks.  An earlier deadline for an already-delayed key wins;
        a key that is currently processing gets its deadline applied when the
        worker calls :meth:`done`.
        """
        if delay <= 0:
            self.add(key)
            return

        with self._cond:
            if self._shutting_down or key in self._pending_set:
                return
            not_before = self.clock() + delay
            if key in self._processing:
                parked = self._parked.get(key)
                if parked is None or not_before < parked:
                    self._parked[key] = not_before
                return
            self._schedule_locked(key, not_before)

    def add_rate_limited(self, key: ObjectKey) -> float:
        """Requeue *key* after its next backoff delay and return that delay."""
        delay = self.rate_limiter.when(key)
        METRICS.requeues_total.labels(reason="backoff").inc()
        self.add_after(key, delay)
        return delay

    def forget(self, key: ObjectKey) -> None:
        self.rate_limiter.forget(key)

    def num_requeues(self, key: ObjectKey) -> int:
        return self.rate_limiter.num_requeues(key)

    def get(self, timeout: float | None = None) -> tuple[ObjectKey | None, bool]:
        """Block until a key is ready and hand it to the caller.

        Returns ``(key, False)`` on success, ``(None, True)`` once the queue
        is shutting down, and ``(None, False)`` if *timeout* elapses first.
        The returned key stays in ``processing`` until :meth:`done`.
        """
        deadline = None if timeout is None else self.clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None, True

                now = self.clock()
                self._promote_due_locked(now)
                if self._pending:
                    key = self._pending.popleft()
                    self._pending_set.discard(key)
                    self._processing.add(key)
                    self._update_depth()
                    return key, False

                wait_for: float | None = None
                if self._delayed:
                    wait_for = max(0.0, self._delayed[0].not_before - now)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None, False
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)
                self._cond.wait(timeout=wait_for)

    def done(self, key: ObjectKey) -> None:
        """Release *key* from ``processing``, re-adding it if it went dirty."""
        with self._cond:
            self._processing.discard(key)
            parked = self._parked.pop(key, None)
            if key in self._dirty:
                self._dirty.discard(key)
                self._add_locked(key)
                return
            if parked is not None and not self._shutting_down:
                self._schedule_locked(key, parked)

    def shut_down(self) -> None:
        """Stop handing out keys and release every blocked :meth:`get`."""
        with self._cond:
            if self._shutting_down:
                return
            self._shutting_down = True
            self.logger.info(
                "Work queue shutting down with %d pending, %d processing, %d delayed key(s)",
                len(self._pending),
                len(self._processing),
                len(self._delayed_index),
            )
            self._cond.notify_all()
