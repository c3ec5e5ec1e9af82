"""
Prometheus metrics.

One registry per application instance:

    http_server_request_duration_ms{method,route,status}   histogram
    http_server_errors_total{method,route,status}          counter
    db_call_duration_ms{label,outcome}                     histogram
    creator_registrations_total                            counter

plus the process and platform collectors. PrometheusMetrics also satisfies
the CallExecutor's MetricsSink, so every database attempt is observed.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

HTTP_BUCKETS_MS = (10, 25, 50, 100, 250, 500, 1000, 2500, 5000)
DB_BUCKETS_MS = (5, 10, 20, 50, 100, 200, 500, 1000, 2000)


class PrometheusMetrics:
    """
    Application metrics on a dedicated registry.

    Usage:
        metrics = PrometheusMetrics()
        executor = CallExecutor(metrics=metrics)

        metrics.observe_request("GET", "/v1/profile/me", 200, 12.5)
        body = metrics.render()
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self, registry: CollectorRegistry | None = None, process_metrics: bool = True
    ):
        self.registry = registry or CollectorRegistry()
        if process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)

        self.http_requests = Histogram(
            "http_server_request_duration_ms",
            "HTTP request duration in ms",
            ["method", "route", "status"],
            buckets=HTTP_BUCKETS_MS,
            registry=self.registry,
        )
        self.http_errors = Counter(
            "http_server_errors",
            "HTTP errors count",
            ["method", "route", "status"],
            registry=self.registry,
        )
        self.db_call_duration = Histogram(
            "db_call_duration_ms",
            "DB call duration in ms",
            ["label", "outcome"],
            buckets=DB_BUCKETS_MS,
            registry=self.registry,
        )
        self.creator_registrations = Counter(
            "creator_registrations",
            "Total creator registrations",
            registry=self.registry,
        )

    def observe(self, label: str, outcome: str, duration_ms: float) -> None:
        self.db_call_duration.labels(label=label, outcome=outcome).observe(duration_ms)

    def observe_request(
        self, method: str, route: str, status: int, duration_ms: float
    ) -> None:
        labels = {"method": method.upper(), "route": route, "status": str(status)}
        self.http_requests.labels(**labels).observe(duration_ms)
        if status >= 400:
            self.http_errors.labels(**labels).inc()

    def render(self) -> bytes:
        """Exposition-format snapshot of the registry."""
        return generate_latest(self.registry)
