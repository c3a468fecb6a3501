from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info


@dataclass(frozen=True)
class ControllerMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``.

    Reconcile counters are labelled by the reconciled kind and the outcome so
    operators can alert on failure ratios per kind.
    """

    reconcile_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_cr_reconcile",
            "Total number of Labeler CR reconciliations (create/update)",
            ["kind", "outcome"],
        )
    )
    reconcile_duration_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "labeler_reconcile_duration_seconds",
            "Seconds spent inside the reconcile function",
            ["kind"],
        )
    )
    fetch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_fetch_errors_total",
            "Total object store reads that failed before reconciliation",
            ["kind"],
        )
    )
    status_update_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_status_update_errors_total",
            "Total failed status sub-resource writes",
            ["kind"],
        )
    )
    events_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_watch_events_total",
            "Total change events received from watch streams",
            ["kind", "type"],
        )
    )
    dropped_events_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_dropped_events_total",
            "Total change events that resolved to no Labeler key",
            ["kind"],
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_watch_errors_total",
            "Total Kubernetes list/watch errors",
            ["kind"],
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_watch_reconnects_total",
            "Total watch stream reconnects after the initial connection",
            ["kind"],
        )
    )
    queue_adds_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_workqueue_adds_total",
            "Total keys accepted by the work queue",
        )
    )
    queue_depth: Gauge = field(
        default_factory=lambda: Gauge(
            "labeler_workqueue_depth",
            "Current number of keys ready for dispatch",
        )
    )
    requeues_total: Counter = field(
        default_factory=lambda: Counter(
            "labeler_workqueue_requeues_total",
            "Total keys scheduled for a delayed retry",
            ["reason"],
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "labeler_controller",
            "Build information for the controller",
        )
    )


METRICS = ControllerMetrics()
