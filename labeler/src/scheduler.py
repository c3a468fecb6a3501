from __future__ import annotations

import logging
import threading

from labeler.src.metrics import METRICS
from labeler.src.model import ObjectKey, Outcome, ReconcileResult
from labeler.src.reconciler import ReconcileAdapter
from labeler.src.workqueue import WorkQueue

LOGGER = logging.getLogger(__name__)


class Scheduler:
    """Fixed pool of worker threads draining a :class:`WorkQueue`.

    Workers are interchangeable.  Single-flight per key comes from the queue:
    a key handed out by ``get`` is not handed out again until ``done``.
    Shutting the queue down makes every idle worker exit; busy workers finish
    their current reconciliation first.
    """

    def __init__(
        self,
        queue: WorkQueue,
        adapter: ReconcileAdapter,
        workers: int,
        logger: logging.Logger | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.queue = queue
        self.adapter = adapter
        self.workers = workers
        self.logger = logger or LOGGER
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("scheduler already started")
        for index in range(self.workers):
            thread = threading.Thread(
                target=self._run_worker,
                name=f"labeler-worker-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        self.logger.info("Started %d reconcile worker(s)", self.workers)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for workers to exit; return True if all of them did."""
        for thread in self._threads:
            thread.join(timeout=timeout)
        return not any(thread.is_alive() for thread in self._threads)

    def _run_worker(self) -> None:
        while self.process_next_item():
            pass
        self.logger.debug("Worker %s exiting", threading.current_thread().name)

    def process_next_item(self) -> bool:
        """Process one key.  Returns False once the queue has shut down."""
        key, shutdown = self.queue.get()
        if shutdown or key is None:
            return False

        try:
            result = self.adapter.invoke(key)
            self.handle_result(key, result)
        except Exception:
            # invoke() classifies its own errors; this only guards the
            # requeue bookkeeping so one bad key cannot kill a worker.
            self.logger.exception("Unexpected failure processing %s", key)
            self.queue.add_rate_limited(key)
        finally:
            self.queue.done(key)
        return True

    def handle_result(self, key: ObjectKey, result: ReconcileResult) -> None:
        if result.outcome is not Outcome.TRANSIENT_ERROR:
            self.queue.forget(key)
        if not result.requeue:
            return

        if result.requeue_after is not None:
            METRICS.requeues_total.labels(reason="requested").inc()
            self.queue.add_after(key, result.requeue_after)
            return

        delay = self.queue.add_rate_limited(key)
        self.logger.info(
            "Requeued %s after %.3fs (attempt %d)",
            key,
            delay,
            self.queue.num_requeues(key),
        )
