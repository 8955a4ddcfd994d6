"""Prometheus metrics for the dispatcher.

Metrics exported:
- trip_dispatcher_sweeps_total: sweep ticks by outcome
- trip_dispatcher_sweep_duration_seconds: sweep tick latency
- trip_dispatcher_transitions_total: state transitions by track and rule
- trip_dispatcher_sends_total: outbound sends by track and status
- trip_dispatcher_inbound_total: inbound messages by resolution tier
- trip_dispatcher_store_errors_total: store failures by operation
- trip_dispatcher_inbound_queue_depth: messages waiting for a worker

All metrics carry a ``dispatcher`` label.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

sweeps_total = Counter(
    "trip_dispatcher_sweeps_total",
    "Total number of sweep ticks",
    labelnames=["dispatcher", "outcome"],
)

sweep_duration_seconds = Histogram(
    "trip_dispatcher_sweep_duration_seconds",
    "Duration of sweep ticks in seconds",
    labelnames=["dispatcher"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

transitions_total = Counter(
    "trip_dispatcher_transitions_total",
    "Total number of trip state transitions",
    labelnames=["dispatcher", "track", "source", "name"],
)

sends_total = Counter(
    "trip_dispatcher_sends_total",
    "Total number of outbound chat messages",
    labelnames=["dispatcher", "track", "status"],
)

inbound_total = Counter(
    "trip_dispatcher_inbound_total",
    "Total number of inbound chat messages by resolution tier",
    labelnames=["dispatcher", "tier"],
)

store_errors_total = Counter(
    "trip_dispatcher_store_errors_total",
    "Total number of record store failures",
    labelnames=["dispatcher", "operation"],
)

inbound_queue_depth = Gauge(
    "trip_dispatcher_inbound_queue_depth",
    "Inbound messages waiting for a worker",
    labelnames=["dispatcher"],
)


class DispatcherMetrics:
    """Metrics recorder bound to one dispatcher name."""

    def __init__(self, dispatcher: str) -> None:
        self._dispatcher = dispatcher

    def record_sweep(self, outcome: str, duration: float | None = None) -> None:
        """Record one sweep tick.

        Args:
            outcome: "ok", "store_unavailable" or "error"
            duration: Optional tick duration in seconds
        """
        sweeps_total.labels(dispatcher=self._dispatcher, outcome=outcome).inc()
        if duration is not None:
            sweep_duration_seconds.labels(dispatcher=self._dispatcher).observe(duration)

    def record_transition(self, track: str, source: str, name: str) -> None:
        """Record a state transition.

        Args:
            track: "passenger" or "driver"
            source: "sweep" or "message"
            name: Sweep rule name, or the state entered for message transitions
        """
        transitions_total.labels(
            dispatcher=self._dispatcher, track=track, source=source, name=name
        ).inc()

    def record_send(self, track: str, status: str) -> None:
        sends_total.labels(dispatcher=self._dispatcher, track=track, status=status).inc()

    def record_inbound(self, tier: str) -> None:
        """Record an inbound message; *tier* is ``"dropped"`` when unresolved."""
        inbound_total.labels(dispatcher=self._dispatcher, tier=tier).inc()

    def record_store_error(self, operation: str) -> None:
        store_errors_total.labels(dispatcher=self._dispatcher, operation=operation).inc()

    def set_queue_depth(self, depth: int) -> None:
        inbound_queue_depth.labels(dispatcher=self._dispatcher).set(depth)
