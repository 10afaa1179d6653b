"""Prometheus-compatible metrics for relay observability.

Tracks message flow (received, rate limited, malformed), signaling relay
outcomes, broadcast fan-out results, participant churn and evictions.
Exposed via the /metrics endpoint in Prometheus exposition format.
"""

import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value


# name -> help text
_COUNTERS: dict[str, str] = {
    "relay_messages_received_total": "Inbound websocket frames",
    "relay_messages_rate_limited_total": "Frames rejected by the rate limiter",
    "relay_messages_malformed_total": "Frames dropped as malformed or unknown",
    "relay_signals_relayed_total": "Offer/answer/ICE frames forwarded to their target",
    "relay_signals_dropped_total": "Offer/answer/ICE frames whose target was missing or closed",
    "relay_broadcast_sends_total": "Successful per-connection broadcast sends",
    "relay_broadcast_failures_total": "Failed per-connection broadcast sends",
    "relay_joins_total": "Successful registrations",
    "relay_joins_rejected_total": "Rejected registrations",
    "relay_leaves_total": "Participants removed (leave, close or eviction)",
    "relay_heartbeat_evictions_total": "Connections terminated for missing pongs",
    "relay_timeout_evictions_total": "Participants evicted for inactivity",
    "relay_snapshots_ingested_total": "World snapshots ingested",
    "relay_snapshots_failed_total": "World snapshots that failed to ingest",
}

_GAUGES: dict[str, str] = {
    "relay_connections_open": "Open websocket connections",
    "relay_participants": "Registered participants",
}


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[str, Counter] = {
            name: Counter(name=name, help=help_text) for name, help_text in _COUNTERS.items()
        }
        self._gauges: dict[str, Gauge] = {
            name: Gauge(name=name, help=help_text) for name, help_text in _GAUGES.items()
        }

    def inc(self, name: str, amount: float = 1.0) -> None:
        """Increment a counter by name.

        Raises:
            KeyError: If the counter is not defined
        """
        with self._lock:
            self._counters[name].inc(amount)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name].set(value)

    def value(self, name: str) -> float:
        """Current value of a counter or gauge."""
        with self._lock:
            if name in self._counters:
                return self._counters[name].value
            return self._gauges[name].value

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Format:
            # HELP metric_name Description
            # TYPE metric_name type
            metric_name value
        """
        with self._lock:
            lines: list[str] = []

            for counter in self._counters.values():
                lines.append(f"# HELP {counter.name} {counter.help}")
                lines.append(f"# TYPE {counter.name} counter")
                lines.append(f"{counter.name} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                lines.append(f"{gauge.name} {gauge.value}")

            return "\n".join(lines) + "\n"

    def get_summary(self) -> dict[str, float]:
        """Flat name -> value view for JSON dashboards."""
        with self._lock:
            summary = {name: c.value for name, c in self._counters.items()}
            summary.update({name: g.value for name, g in self._gauges.items()})
            return summary


# Global metrics collector singleton
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
