from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram


@dataclass(frozen=True)
class ControllerMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``."""

    events_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_events_total",
            "Total Foo notifications received from the cache",
            ["event"],
        )
    )
    event_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_event_errors_total",
            "Total Foo notifications that could not be turned into a key",
        )
    )
    reconcile_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_reconcile_total",
            "Total reconcile invocations by outcome",
            ["result"],
        )
    )
    reconcile_duration_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "foo_controller_reconcile_duration_seconds",
            "Seconds spent in a single reconcile",
        )
    )
    retries_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_retries_total",
            "Total keys requeued with backoff after a failed reconcile",
        )
    )
    dropped_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_dropped_total",
            "Total keys dropped from the queue without converging",
            ["reason"],
        )
    )
    child_actions_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_child_actions_total",
            "Total Deployment and finalizer mutations issued",
            ["action"],
        )
    )
    queue_depth: Gauge = field(
        default_factory=lambda: Gauge(
            "foo_controller_queue_depth",
            "Keys currently waiting in the work queue",
        )
    )
    cache_relists_total: Counter = field(
        default_factory=lambda: Counter(
            "foo_controller_cache_relists_total",
            "Total full relists of Foo objects after the initial one",
        )
    )


METRICS = ControllerMetrics()
