from __future__ import annotations

import logging
import math
import random
import threading
import time
from collections.abc import Callable
from typing import Any

from kubernetes import watch
from kubernetes.client import ApiException

from labeler.src.metrics import METRICS
from labeler.src.model import ChangeEvent, EventType, ObjectKey, extract_identity, key_for

EventHandler = Callable[[ChangeEvent], None]

_EVENT_TYPES: dict[str, EventType] = {
    "ADDED": EventType.ADDED,
    "MODIFIED": EventType.UPDATED,
    "DELETED": EventType.DELETED,
}

_MAX_BACKOFF_SECONDS = 30


def _list_items(response: Any) -> list[Any]:
    if isinstance(response, dict):
        items = response.get("items")
    else:
        items = getattr(response, "items", None)
    return list(items) if isinstance(items, (list, tuple)) else []


def _list_resource_version(response: Any) -> str | None:
    if isinstance(response, dict):
        metadata = response.get("metadata") or {}
        version = metadata.get("resourceVersion") if isinstance(metadata, dict) else None
    else:
        version = getattr(getattr(response, "metadata", None), "resource_version", None)
    return str(version) if version else None


class ObjectWatchAdapter:
    """List-then-watch one resource kind and emit a :class:`ChangeEvent` per notification.

    The adapter keeps the last seen body of every object (an informer-style
    cache) so that a relist after ``410 Gone`` can report objects that
    disappeared while the watch was down, and so periodic resyncs can
    replay every object without hitting the API server.

    Events are passed to ``handler`` synchronously and without filtering.
    A handler error is logged and never interrupts the watch stream.
    Objects with missing metadata are forwarded with an empty name or
    namespace; validating them is left to reconciliation.
    """

    def __init__(
        self,
        kind: str,
        list_fn: Callable[..., Any],
        handler: EventHandler,
        list_kwargs: dict[str, Any] | None = None,
        watch_timeout_seconds: int = 30,
        resync_seconds: float = 0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.kind = kind
        self.list_fn = list_fn
        self.handler = handler
        self.list_kwargs = dict(list_kwargs or {})
        self.watch_timeout_seconds = watch_timeout_seconds
        self.resync_seconds = resync_seconds
        self.logger = logger or logging.getLogger(__name__)

        self.synced = threading.Event()
        self._cache: dict[ObjectKey, Any] = {}
        self._next_resync: float | None = None
        self._external_stop = threading.Event()
        self._active_watcher: watch.Watch | None = None
        self._watcher_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ObjectWatchAdapter(kind={self.kind!r})"

    def cached_keys(self) -> set[ObjectKey]:
        return set(self._cache)

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._external_stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def _emit(self, event: ChangeEvent) -> None:
        METRICS.events_total.labels(kind=self.kind, type=event.event_type.value).inc()
        try:
            self.handler(event)
        except Exception:
            self.logger.exception("Event handler failed for %s %s", event.event_type.value, event.key)

    def handle_event(self, event_type: str, obj: Any) -> ChangeEvent | None:
        """Translate one raw watch event and emit it.

        Returns the emitted event, or ``None`` for event types that carry no
        object change (``BOOKMARK``, ``ERROR``).
        """
        mapped = _EVENT_TYPES.get(event_type)
        if mapped is None:
            return None

        key = key_for(self.kind, obj)
        if mapped is EventType.DELETED:
            self._cache.pop(key, None)
        else:
            self._cache[key] = obj

        event = ChangeEvent(kind=self.kind, key=key, event_type=mapped, obj=obj)
        self._emit(event)
        return event

    def replace(self, items: list[Any]) -> None:
        """Reconcile the cache against a full listing.

        Newly seen objects are emitted as ADDED, known ones as UPDATED, and
        cached objects missing from the listing as DELETED.
        """
        seen: set[ObjectKey] = set()
        for obj in items:
            key = key_for(self.kind, obj)
            seen.add(key)
            event_type = EventType.UPDATED if key in self._cache else EventType.ADDED
            self._cache[key] = obj
            self._emit(ChangeEvent(kind=self.kind, key=key, event_type=event_type, obj=obj))

        for key in [k for k in self._cache if k not in seen]:
            obj = self._cache.pop(key)
            self._emit(ChangeEvent(kind=self.kind, key=key, event_type=EventType.DELETED, obj=obj))

    def resync(self) -> None:
        """Replay every cached object as UPDATED."""
        self.logger.debug("Resyncing %d cached %s object(s)", len(self._cache), self.kind)
        for key, obj in list(self._cache.items()):
            self._emit(ChangeEvent(kind=self.kind, key=key, event_type=EventType.UPDATED, obj=obj))

    def _maybe_resync(self, now_monotonic: float) -> None:
        if self.resync_seconds <= 0:
            return
        if self._next_resync is None:
            self._next_resync = now_monotonic + self.resync_seconds
            return
        if now_monotonic >= self._next_resync:
            self.resync()
            self._next_resync = now_monotonic + self.resync_seconds

    def _next_watch_timeout_seconds(self, now_monotonic: float) -> int:
        """Return the watch timeout, shortened so the loop wakes for the next resync."""
        if self.resync_seconds <= 0 or self._next_resync is None:
            return self.watch_timeout_seconds
        remaining = max(1.0, self._next_resync - now_monotonic)
        return min(self.watch_timeout_seconds, max(1, math.ceil(remaining)))

    def _list(self) -> tuple[list[Any], str | None]:
        response = self.list_fn(**self.list_kwargs)
        return _list_items(response), _list_resource_version(response)

    def _backoff(self, stop: threading.Event, backoff_seconds: int) -> int:
        jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
        stop.wait(timeout=jittered)
        return min(backoff_seconds * 2, _MAX_BACKOFF_SECONDS)

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        """List, then watch, until stopped.

        1. Lists with jittered exponential backoff and emits ADDED for every
           object, then marks the adapter synced.
        2. Watches from the list's ``resourceVersion``.
        3. On ``410 Gone`` re-lists and diffs against the cache.  A failed
           re-list is retried with backoff before watching again.
        4. ``401``/``403`` end the loop: retrying cannot fix RBAC.
        5. Other errors back off with jitter, capped at 30 s.

        ``synced`` is cleared whenever the loop exits, so a dead adapter is
        never reported as healthy.
        """
        try:
            self._run(stop_event or threading.Event())
        finally:
            self.synced.clear()

    def _denied(self, action: str, exc: ApiException) -> None:
        self.logger.error(
            "Kubernetes API access denied %s %s (status=%s). "
            "Check controller RBAC and service account permissions.",
            action,
            self.kind,
            exc.status,
        )
        METRICS.watch_errors_total.labels(kind=self.kind).inc()

    def _run(self, stop: threading.Event) -> None:
        self._external_stop.clear()

        resource_version: str | None = None
        relist = True
        backoff_seconds = 1
        watch_stream_count = 0
        while not self._should_stop(stop):
            if relist:
                try:
                    items, resource_version = self._list()
                except ApiException as exc:
                    if exc.status in {401, 403}:
                        self._denied("listing", exc)
                        return
                    self.logger.exception("Listing %s failed", self.kind)
                    METRICS.watch_errors_total.labels(kind=self.kind).inc()
                    backoff_seconds = self._backoff(stop, backoff_seconds)
                    continue
                except Exception:
                    self.logger.exception("Unexpected error listing %s", self.kind)
                    METRICS.watch_errors_total.labels(kind=self.kind).inc()
                    backoff_seconds = self._backoff(stop, backoff_seconds)
                    continue

                self.replace(items)
                relist = False
                backoff_seconds = 1
                self.synced.set()
                self.logger.info(
                    "Listed %d %s object(s); watching from resourceVersion %s",
                    len(items),
                    self.kind,
                    resource_version,
                )

            self._maybe_resync(time.monotonic())
            watcher = watch.Watch()
            with self._watcher_lock:
                self._active_watcher = watcher
            try:
                if watch_stream_count > 0:
                    METRICS.watch_reconnects_total.labels(kind=self.kind).inc()
                watch_stream_count += 1
                stream = watcher.stream(
                    self.list_fn,
                    resource_version=resource_version,
                    timeout_seconds=self._next_watch_timeout_seconds(time.monotonic()),
                    **self.list_kwargs,
                )
                for raw_event in stream:
                    if self._should_stop(stop):
                        break
                    obj = raw_event.get("object")
                    if obj is None:
                        continue
                    version = extract_identity(obj).resource_version
                    if version:
                        resource_version = version
                    self.handle_event(str(raw_event.get("type", "")), obj)

                backoff_seconds = 1
            except ApiException as exc:
                if exc.status == 410:
                    self.logger.warning("%s watch resource version expired, re-listing", self.kind)
                    relist = True
                    continue

                if exc.status in {401, 403}:
                    self._denied("watching", exc)
                    return

                self.logger.exception("Kubernetes API watch error for %s", self.kind)
                METRICS.watch_errors_total.labels(kind=self.kind).inc()
                backoff_seconds = self._backoff(stop, backoff_seconds)
            except Exception:
                self.logger.exception("Unexpected %s watch error", self.kind)
                METRICS.watch_errors_total.labels(kind=self.kind).inc()
                backoff_seconds = self._backoff(stop, backoff_seconds)
            finally:
                watcher.stop()
                with self._watcher_lock:
                    if self._active_watcher is watcher:
                        self._active_watcher = None
