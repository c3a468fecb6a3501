from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from labeler.src.metrics import METRICS
from labeler.src.model import (
    ObjectKey,
    Outcome,
    PermanentError,
    ReconcileResult,
    TransientError,
)
from labeler.src.store import ObjectStore

ReconcileFunc = Callable[[Any], ReconcileResult | None]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOptions:
    """Behaviour switches for :class:`ReconcileAdapter`.

    Attributes:
        skip_status_updates: When true, results carrying a ``status`` are not
                             written back to the status sub-resource.
    """

    skip_status_updates: bool = True


class ReconcileAdapter:
    """Fetch the object behind a key, run the reconcile function, classify the result.

    :meth:`invoke` never raises.  Every failure, from the object store or
    from the reconcile function, comes back as a :class:`ReconcileResult`
    with a transient or permanent outcome.
    """

    def __init__(
        self,
        store: ObjectStore,
        reconcile_fn: ReconcileFunc,
        options: ReconcileOptions | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.store = store
        self.reconcile_fn = reconcile_fn
        self.options = options or ReconcileOptions()
        self.logger = logger or LOGGER
        self.clock = clock

    def invoke(self, key: ObjectKey) -> ReconcileResult:
        try:
            obj = self.store.get(key)
        except Exception as exc:
            METRICS.fetch_errors_total.labels(kind=key.kind.lower()).inc()
            self.logger.warning("Failed to fetch %s; will retry: %s", key, exc)
            return ReconcileResult(outcome=Outcome.TRANSIENT_ERROR, error=f"fetch failed: {exc}")

        if obj is None:
            self.logger.debug("%s no longer exists; nothing to reconcile", key)
            return ReconcileResult()

        result = self._call(key, obj)
        METRICS.reconcile_total.labels(kind=key.kind.lower(), outcome=result.outcome.value).inc()

        if result.outcome is Outcome.SUCCESS and result.status is not None:
            result = self._write_status(key, result)

        if result.outcome is Outcome.PERMANENT_ERROR:
            self.logger.error(
                "Reconcile of %s failed permanently: %s",
                key,
                result.error,
                extra={"fields": {"key": str(key), "outcome": result.outcome.value}},
            )
        elif result.outcome is Outcome.TRANSIENT_ERROR:
            self.logger.warning(
                "Reconcile of %s failed, will retry: %s",
                key,
                result.error,
                extra={"fields": {"key": str(key), "outcome": result.outcome.value}},
            )
        return result

    def _call(self, key: ObjectKey, obj: Any) -> ReconcileResult:
        started = self.clock()
        try:
            result = self.reconcile_fn(obj)
        except PermanentError as exc:
            return ReconcileResult(outcome=Outcome.PERMANENT_ERROR, error=str(exc))
        except TransientError as exc:
            return ReconcileResult(
                outcome=Outcome.TRANSIENT_ERROR,
                requeue_after=exc.requeue_after,
                error=str(exc),
            )
        except Exception as exc:
            self.logger.exception("Unexpected error reconciling %s", key)
            return ReconcileResult(outcome=Outcome.TRANSIENT_ERROR, error=repr(exc))
        finally:
            METRICS.reconcile_duration_seconds.labels(kind=key.kind.lower()).observe(
                self.clock() - started
            )

        if result is None:
            return ReconcileResult()
        if not isinstance(result, ReconcileResult):
            self.logger.error(
                "Reconcile function returned %s for %s; expected ReconcileResult or None",
                type(result).__name__,
                key,
            )
            return ReconcileResult(
                outcome=Outcome.TRANSIENT_ERROR,
                error=f"unexpected reconcile result of type {type(result).__name__}",
            )
        return result

    def _write_status(self, key: ObjectKey, result: ReconcileResult) -> ReconcileResult:
        if self.options.skip_status_updates or result.status is None:
            return result
        try:
            self.store.update_status(key, result.status)
        except Exception as exc:
            METRICS.status_update_errors_total.labels(kind=key.kind.lower()).inc()
            return ReconcileResult(
                outcome=Outcome.TRANSIENT_ERROR,
                error=f"status update failed: {exc}",
            )
        return result
