"""Prometheus metrics for the dashboard engine.

Each EngineMetrics instance owns a private CollectorRegistry so that several
engines (and tests) can coexist in one process, and so that reset() can
start from zero without touching the global default registry.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

LATENCY_BUCKETS = [0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]


class EngineMetrics:
    """Counters, histograms and gauges shared by the engine components."""

    def __init__(self) -> None:
        self._build()

    def _build(self) -> None:
        self.registry = CollectorRegistry()

        # Pane registry
        self.pane_updates = Counter(
            "paneboard_pane_updates",
            "Pane updates processed by the registry",
            ["result"],  # "applied" or "failed"
            registry=self.registry,
        )
        self.update_latency = Histogram(
            "paneboard_pane_update_duration_seconds",
            "Time spent applying a single pane update",
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )

        # Keyboard dispatcher
        self.key_presses = Counter(
            "paneboard_key_presses",
            "Key events parsed by the dispatcher",
            registry=self.registry,
        )
        self.commands = Counter(
            "paneboard_commands",
            "Key events resolved to an action",
            ["scope"],  # "global" or "pane"
            registry=self.registry,
        )
        self.unbound_keys = Counter(
            "paneboard_unbound_keys",
            "Key events with no binding",
            registry=self.registry,
        )

        # Update coordinator
        self.change_events = Counter(
            "paneboard_change_events",
            "Change notifications received",
            ["priority"],
            registry=self.registry,
        )
        self.coordinator_updates = Counter(
            "paneboard_coordinator_updates",
            "Grouped pane updates dispatched by the coordinator",
            ["result"],  # "dispatched" or "failed"
            registry=self.registry,
        )
        self.flush_latency = Histogram(
            "paneboard_flush_duration_seconds",
            "Time spent draining the pending change queue",
            buckets=LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.flush_batch_size = Histogram(
            "paneboard_flush_events",
            "Events drained per flush",
            buckets=[1, 2, 5, 10, 25, 50, 100, 250, 1000],
            registry=self.registry,
        )
        self.active_watchers = Gauge(
            "paneboard_active_watchers",
            "Change source subscriptions currently open",
            registry=self.registry,
        )

    def reset(self) -> None:
        """Discard all accumulated values."""
        self._build()

    def value(self, name: str, **labels: str) -> float:
        """Read a sample value, returning 0.0 for series not yet created."""
        sample = self.registry.get_sample_value(name, labels or None)
        return sample if sample is not None else 0.0

    def mean(self, histogram: str) -> float:
        """Mean of a histogram's observations, 0.0 when empty."""
        count = self.value(f"{histogram}_count")
        if count == 0:
            return 0.0
        return self.value(f"{histogram}_sum") / count
