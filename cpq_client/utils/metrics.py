"""Prometheus metrics for backend requests and session sync."""

from prometheus_client import Counter, Histogram

request_latency_ms = Histogram(
    "cpq_client_request_latency_ms",
    "Backend request latency in milliseconds",
    ["method", "outcome"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 5000, 10000, 30000],
)

request_errors_total = Counter(
    "cpq_client_request_errors_total",
    "Total failed backend requests",
    ["kind"],
)

stale_responses_total = Counter(
    "cpq_client_stale_responses_total",
    "Selection sync responses discarded because a newer edit or flush superseded them",
)


class PrometheusRequestMetrics:
    """Prometheus-based request metrics implementation."""

    def record_latency(self, method: str, outcome: str, latency_ms: float) -> None:
        """Record request latency."""
        request_latency_ms.labels(method=method, outcome=outcome).observe(latency_ms)

    def inc_error(self, kind: str) -> None:
        """Increment error counter."""
        request_errors_total.labels(kind=kind).inc()

    def inc_stale_response(self) -> None:
        """Count a discarded out-of-order sync response."""
        stale_responses_total.inc()
