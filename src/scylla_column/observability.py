"""
Observability for the column-family manager.

Provides:
- OpenTelemetry tracing around store operations
- Per-operation latency percentiles
- Prometheus exposition of operation counters and latencies
"""

import logging
import statistics
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

class Tracer:
    """
    Tracing interface over OpenTelemetry.

    Uses the globally configured tracer provider when one is set, otherwise
    installs an SDK provider tagged with ``service_name``. Disabled tracers
    yield no-op spans.
    """

    def __init__(self, service_name: str = "scylla-column", enabled: bool = True):
        self.service_name = service_name
        self.enabled = enabled
        self._tracer = None

        if enabled:
            self._initialize_opentelemetry()

    def _initialize_opentelemetry(self):
        from opentelemetry import trace
        from opentelemetry.sdk.resources import SERVICE_NAME, Resource
        from opentelemetry.sdk.trace import TracerProvider

        current_provider = trace.get_tracer_provider()
        if isinstance(current_provider, TracerProvider):
            self._tracer = trace.get_tracer(__name__)
            logger.info("Using existing OpenTelemetry tracer provider")
            return

        provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: self.service_name}))
        trace.set_tracer_provider(provider)
        self._tracer = trace.get_tracer(__name__)
        logger.info(f"OpenTelemetry tracing initialized for {self.service_name}")

    @contextmanager
    def span(self, name: str, attributes: Optional[dict[str, Any]] = None) -> Iterator[Any]:
        """
        Create a traced span for an operation.

        Args:
            name: Span name (e.g., "scylla_column.save")
            attributes: Span attributes

        Yields:
            The active span, or ``None`` when tracing is disabled
        """
        if not self.enabled or self._tracer is None:
            yield None
            return

        from opentelemetry import trace

        with self._tracer.start_as_current_span(name) as span:
            if attributes:
                for key, value in attributes.items():
                    span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))

            try:
                yield span
                span.set_status(trace.Status(trace.StatusCode.OK))
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


# ============================================================================
# Metrics
# ============================================================================

class PercentileTracker:
    """
    Track percentile latencies (p50, p95, p99) over a sliding window.
    """

    def __init__(self, window_size: int = 1000, percentiles: list[float] | None = None):
        self.window_size = window_size
        self.percentiles = percentiles or [0.5, 0.95, 0.99]
        self.samples: deque[float] = deque(maxlen=window_size)

    def record(self, value: float):
        self.samples.append(value)

    def get_percentiles(self) -> dict[str, float]:
        """
        Calculate percentile values.

        Returns:
            Dictionary with keys like "p50", "p95", "p99"
        """
        if not self.samples:
            return {f"p{int(p * 100)}": 0.0 for p in self.percentiles}

        if len(self.samples) == 1:
            only = self.samples[0]
            return {f"p{int(p * 100)}": only for p in self.percentiles}

        cut_points = statistics.quantiles(sorted(self.samples), n=100, method="inclusive")
        result = {}
        for p in self.percentiles:
            index = min(max(int(p * 100) - 1, 0), len(cut_points) - 1)
            result[f"p{int(p * 100)}"] = cut_points[index]
        return result

    def get_stats(self) -> dict[str, Any]:
        if not self.samples:
            return {
                "count": 0,
                "avg": 0.0,
                "min": 0.0,
                "max": 0.0,
                **{f"p{int(p * 100)}": 0.0 for p in self.percentiles}
            }

        return {
            "count": len(self.samples),
            "avg": statistics.mean(self.samples),
            "min": min(self.samples),
            "max": max(self.samples),
            **self.get_percentiles()
        }


class OperationMetrics:
    """
    Operation metrics for a manager instance.

    Tracks:
    - Latency percentiles per operation
    - Operation and error counts
    - Error types

    Counts and latencies are mirrored into a private Prometheus registry so
    several managers can coexist in one process.
    """

    def __init__(self, service_name: str = "scylla_column", percentiles: list[float] | None = None):
        """
        Initialize metrics tracker.

        Args:
            service_name: Service name attached to every exported sample
            percentiles: Percentiles to track (default: [0.5, 0.95, 0.99])
        """
        self.service_name = service_name
        self.percentiles = percentiles or [0.5, 0.95, 0.99]
        self._init_state()

    def _init_state(self):
        self.latencies: dict[str, PercentileTracker] = defaultdict(
            lambda: PercentileTracker(percentiles=self.percentiles)
        )
        self.operation_counts: dict[str, int] = defaultdict(int)
        self.error_counts: dict[str, int] = defaultdict(int)
        self.error_types: dict[str, int] = defaultdict(int)
        self.start_time = time.time()

        self.registry = CollectorRegistry()
        self._operations_total = Counter(
            "scylla_column_operations",
            "Store operations executed",
            ["service", "operation"],
            registry=self.registry,
        )
        self._errors_total = Counter(
            "scylla_column_errors",
            "Store operations that failed",
            ["service", "operation", "error_type"],
            registry=self.registry,
        )
        self._latency_seconds = Histogram(
            "scylla_column_latency_seconds",
            "Store operation latency",
            ["service", "operation"],
            registry=self.registry,
        )

    def record_query(self, operation: str, latency_ms: float, success: bool = True, error_type: str | None = None):
        """
        Record one executed operation.

        Args:
            operation: Operation name (e.g. 'save', 'find')
            latency_ms: Latency in milliseconds
            success: Whether the operation succeeded
            error_type: Exception class name when it failed
        """
        self.latencies[operation].record(latency_ms)
        self.operation_counts[operation] += 1
        self._operations_total.labels(self.service_name, operation).inc()
        self._latency_seconds.labels(self.service_name, operation).observe(latency_ms / 1000.0)

        if not success:
            self.error_counts[operation] += 1
            error_type = error_type or "unknown"
            self.error_types[error_type] += 1
            self._errors_total.labels(self.service_name, operation, error_type).inc()

    def get_latency_stats(self, operation: str) -> dict[str, Any]:
        return self.latencies[operation].get_stats()

    def get_stats(self) -> dict[str, Any]:
        """
        Summarize everything recorded so far.

        Returns:
            Dictionary with totals, error rate and per-operation latency stats
        """
        total_operations = sum(self.operation_counts.values())
        total_errors = sum(self.error_counts.values())

        return {
            "uptime_seconds": time.time() - self.start_time,
            "total_queries": total_operations,
            "total_errors": total_errors,
            "error_rate": total_errors / total_operations if total_operations > 0 else 0.0,
            "operations": dict(self.operation_counts),
            "errors": dict(self.error_counts),
            "error_types": dict(self.error_types),
            "latencies": {
                operation: tracker.get_stats()
                for operation, tracker in self.latencies.items()
            },
        }

    def reset(self):
        """Reset all counters and start a fresh registry."""
        self._init_state()

    def export_prometheus(self) -> str:
        """Export metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode("utf-8")
