"""Metrics collection primitives for the relay gateway."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


@dataclass
class CompletionMetricsEvent:
    """Structured metrics payload, one per completion request."""

    status: str
    provider: Optional[str]
    duration_ms: float
    attempts: int
    fallback: bool = False
    error_kind: Optional[str] = None


class MetricsCollector(Protocol):
    """Protocol for collecting metrics events."""

    def record(self, event: CompletionMetricsEvent) -> None:
        """Persist or emit the metrics event."""


class LoggingMetricsCollector(MetricsCollector):
    """Default metrics collector that logs structured events."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("relay_gateway.metrics")

    def record(self, event: CompletionMetricsEvent) -> None:
        payload = {
            "status": event.status,
            "provider": event.provider,
            "duration_ms": round(event.duration_ms, 3),
            "attempts": event.attempts,
            "fallback": event.fallback,
            "error_kind": event.error_kind,
        }
        self._logger.info("completion_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    """Metrics collector backed by Prometheus client library."""

    def __init__(
        self,
        *,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._events = Counter(
            "relay_completion_events_total",
            "Total completion requests by outcome",
            ["status", "provider", "fallback", "error_kind"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "relay_completion_duration_seconds",
            "Completion handling duration",
            ["status", "provider"],
            registry=self._registry,
        )
        self._attempts = Histogram(
            "relay_completion_attempts",
            "Providers attempted per completion",
            ["status"],
            registry=self._registry,
            buckets=(1, 2, 3, 4, 5, 10),
        )
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: CompletionMetricsEvent) -> None:
        provider = event.provider or "unknown"
        self._events.labels(
            status=event.status,
            provider=provider,
            fallback=str(bool(event.fallback)).lower(),
            error_kind=event.error_kind or "none",
        ).inc()
        self._duration.labels(status=event.status, provider=provider).observe(
            max(event.duration_ms / 1000.0, 0.0)
        )
        self._attempts.labels(status=event.status).observe(max(float(event.attempts), 0.0))
