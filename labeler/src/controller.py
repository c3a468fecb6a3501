from __future__ import annotations

import logging
import threading

from kubernetes.client import AppsV1Api, CustomObjectsApi

from labeler.src.config import ControllerConfig
from labeler.src.kube import ListSource, deployment_list_source, labeler_list_source
from labeler.src.labeling import DeploymentLabeler
from labeler.src.model import PRIMARY_KIND, SECONDARY_KIND
from labeler.src.reconciler import ReconcileAdapter, ReconcileFunc, ReconcileOptions
from labeler.src.resolver import KeyResolver
from labeler.src.router import EventRouter
from labeler.src.scheduler import Scheduler
from labeler.src.store import LabelerStore, ObjectStore
from labeler.src.watch import ObjectWatchAdapter
from labeler.src.workqueue import ExponentialBackoff, WorkQueue

LOGGER = logging.getLogger(__name__)


class Controller:
    """Wire two watch adapters, the router, the work queue and the workers together.

    Every collaborator is passed in explicitly: the list calls for both
    watched kinds, the object store used to re-read Labelers, and the
    reconcile function.  Nothing is looked up from process-global state, so
    tests can build a controller entirely from fakes.

    ``ready`` is set once both watches have completed their initial list and
    cleared again if either watch stops running.
    """

    def __init__(
        self,
        labeler_source: ListSource,
        deployment_source: ListSource,
        store: ObjectStore,
        reconcile_fn: ReconcileFunc,
        config: ControllerConfig,
        logger: logging.Logger | None = None,
        shutdown_timeout_seconds: float = 30.0,
    ) -> None:
        self.config = config
        self.logger = logger or LOGGER
        self.shutdown_timeout_seconds = shutdown_timeout_seconds

        self.queue = WorkQueue(
            rate_limiter=ExponentialBackoff(
                base_seconds=config.backoff_base_seconds,
                cap_seconds=config.backoff_cap_seconds,
            )
        )
        self.resolver = KeyResolver(owner_label=config.owner_label)
        self.router = EventRouter(
            resolver=self.resolver,
            work_queue=self.queue,
            kinds=(PRIMARY_KIND, SECONDARY_KIND),
            buffer_size=config.event_buffer_size,
        )
        self.adapter = ReconcileAdapter(
            store=store,
            reconcile_fn=reconcile_fn,
            options=ReconcileOptions(skip_status_updates=config.skip_status_updates),
        )
        self.scheduler = Scheduler(self.queue, self.adapter, workers=config.workers)

        self.watchers = [
            ObjectWatchAdapter(
                kind=kind,
                list_fn=list_fn,
                list_kwargs=list_kwargs,
                handler=self.router.submit,
                watch_timeout_seconds=config.watch_timeout_seconds,
                resync_seconds=config.resync_seconds,
            )
            for kind, (list_fn, list_kwargs) in (
                (PRIMARY_KIND, labeler_source),
                (SECONDARY_KIND, deployment_source),
            )
        ]
        self.ready = threading.Event()

    def queue_depth(self) -> int:
        return len(self.queue)

    def _synced(self) -> bool:
        return all(watcher.synced.is_set() for watcher in self.watchers)

    def run(self, stop_event: threading.Event) -> None:
        """Run until *stop_event* is set, then shut down in dependency order.

        Watches stop first while the router keeps draining their channels,
        so no watcher is left blocked on a full channel.  Then the router
        stops and the queue shuts down, releasing idle workers while busy
        ones finish their current reconciliation.
        """
        self.logger.info(
            "Setting up event handlers for %s and %s (namespace=%s, workers=%d)",
            PRIMARY_KIND,
            SECONDARY_KIND,
            self.config.namespace or "<all>",
            self.config.workers,
        )
        router_stop = threading.Event()
        router_thread = threading.Thread(
            target=self.router.run_forever,
            args=(router_stop,),
            name="labeler-router",
            daemon=True,
        )
        watch_threads = [
            threading.Thread(
                target=watcher.run_forever,
                args=(stop_event,),
                name=f"labeler-watch-{watcher.kind.lower()}",
                daemon=True,
            )
            for watcher in self.watchers
        ]
        router_thread.start()
        for thread in watch_threads:
            thread.start()
        self.scheduler.start()

        while not stop_event.wait(timeout=0.2):
            self._update_readiness()

        self.ready.clear()
        self.logger.info("Stopping controller")
        for watcher in self.watchers:
            watcher.request_stop()
        for thread in watch_threads:
            thread.join(timeout=self.shutdown_timeout_seconds)
        router_stop.set()
        router_thread.join(timeout=self.shutdown_timeout_seconds)
        self.queue.shut_down()

        if not self.scheduler.join(timeout=self.shutdown_timeout_seconds):
            self.logger.error(
                "Reconcile workers did not finish within %ss", self.shutdown_timeout_seconds
            )
        self.logger.info("Controller stopped")

    def _update_readiness(self) -> None:
        if self._synced():
            if not self.ready.is_set():
                self.logger.info("Initial list complete for all watched kinds")
                self.ready.set()
            return
        if self.ready.is_set():
            stale = [w.kind for w in self.watchers if not w.synced.is_set()]
            self.logger.error("Watch for %s is no longer running; marking not ready", ", ".join(stale))
            self.ready.clear()


def build_controller(
    apps_api: AppsV1Api,
    custom_api: CustomObjectsApi,
    config: ControllerConfig,
    reconcile_fn: ReconcileFunc | None = None,
) -> Controller:
    """Construct a :class:`Controller` against the Kubernetes API.

    ``reconcile_fn`` defaults to :class:`DeploymentLabeler`.
    """
    store = LabelerStore(
        custom_api=custom_api,
        group=config.labeler_group,
        version=config.labeler_version,
        plural=config.labeler_plural,
    )
    return Controller(
        labeler_source=labeler_list_source(
            custom_api,
            group=config.labeler_group,
            version=config.labeler_version,
            plural=config.labeler_plural,
            namespace=config.namespace,
        ),
        deployment_source=deployment_list_source(apps_api, config.namespace),
        store=store,
        reconcile_fn=reconcile_fn or DeploymentLabeler(apps_api, owner_label=config.owner_label),
        config=config,
    )
