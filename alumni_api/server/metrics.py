"""Prometheus request metrics exposed on the metrics endpoint."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)


RESPONSE_TIME_BUCKETS_MS = (1, 50, 100, 200, 400, 500, 800, 1000, 2000)


class RequestMetrics:
    """Per-app registry so several apps in one process never collide."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        buckets: tuple[float, ...] = RESPONSE_TIME_BUCKETS_MS,
    ) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        ProcessCollector(registry=self.registry)
        PlatformCollector(registry=self.registry)
        GCCollector(registry=self.registry)
        self.requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests served",
            registry=self.registry,
        )
        self.response_time = Histogram(
            "http_request_duration_ms",
            "Request to response time in milliseconds",
            ["method", "route", "statusCode"],
            buckets=buckets,
            registry=self.registry,
        )

    def observe(self, *, method: str, route: str, status_code: int, duration_ms: float) -> None:
        self.requests_total.inc()
        self.response_time.labels(
            method=method.upper(),
            route=route,
            statusCode=str(int(status_code)),
        ).observe(duration_ms)

    @property
    def total_requests(self) -> int:
        return int(self.registry.get_sample_value("http_requests_total") or 0)

    def render(self) -> bytes:
        return generate_latest(self.registry)
