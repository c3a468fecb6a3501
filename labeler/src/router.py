from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable

from labeler.src.model import ChangeEvent, ObjectKey
from labeler.src.resolver import KeyResolver
from labeler.src.workqueue import WorkQueue

LOGGER = logging.getLogger(__name__)


class EventRouter:
    """Merge the per-kind event channels into the work queue.

    Every watched kind gets its own bounded channel, so a burst on one kind
    cannot starve the other.  A single router thread takes events from the
    channels in rotation, resolves them to Labeler keys and adds those keys
    to the work queue.  A full channel blocks the submitting watch thread,
    which leaves the backlog with the watch transport.
    """

    def __init__(
        self,
        resolver: KeyResolver,
        work_queue: WorkQueue,
        kinds: Iterable[str],
        buffer_size: int = 1024,
        poll_interval_seconds: float = 0.5,
        logger: logging.Logger | None = None,
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        self.resolver = resolver
        self.work_queue = work_queue
        self.poll_interval_seconds = poll_interval_seconds
        self.logger = logger or LOGGER

        self._channels: dict[str, queue.Queue[ChangeEvent]] = {
            kind: queue.Queue(maxsize=buffer_size) for kind in kinds
        }
        if not self._channels:
            raise ValueError("at least one kind is required")
        self._order = list(self._channels)
        self._next_index = 0
        # Counts events across all channels; released after every put.
        self._available = threading.Semaphore(0)

    def submit(self, event: ChangeEvent) -> None:
        """Handler for watch adapters: buffer *event* in its kind's channel."""
        channel = self._channels.get(event.kind)
        if channel is None:
            self.logger.warning("No channel for kind %s; dropping event for %s", event.kind, event.key)
            return
        channel.put(event)
        self._available.release()

    def _next_event(self, timeout: float | None) -> ChangeEvent | None:
        if not self._available.acquire(timeout=timeout):
            return None
        for offset in range(len(self._order)):
            index = (self._next_index + offset) % len(self._order)
            try:
                event = self._channels[self._order[index]].get_nowait()
            except queue.Empty:
                continue
            self._next_index = (index + 1) % len(self._order)
            return event
        return None

    def dispatch(self, event: ChangeEvent) -> set[ObjectKey]:
        """Resolve *event* and enqueue every resulting key."""
        keys = self.resolver.resolve(event)
        for key in keys:
            self.work_queue.add(key)
        if keys:
            self.logger.debug(
                "%s %s %s enqueued %s",
                event.kind,
                event.event_type.value,
                event.key,
                ", ".join(sorted(str(k) for k in keys)),
            )
        return keys

    def drain(self) -> int:
        """Dispatch everything currently buffered without blocking."""
        count = 0
        while True:
            event = self._next_event(timeout=0)
            if event is None:
                return count
            self.dispatch(event)
            count += 1

    def run_forever(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            event = self._next_event(timeout=self.poll_interval_seconds)
            if event is None:
                continue
            try:
                self.dispatch(event)
            except Exception:
                self.logger.exception("Failed to route %s event for %s", event.kind, event.key)
