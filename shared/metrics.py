"""
Shared metrics configuration for Switchboard services.

Metrics are declared in tables of ``(type, name, documentation, labels)``;
every service gets the common table, and services listed in
``SERVICE_METRICS`` get their own on top.
"""

from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info

from shared.config import SERVICE_VERSION

EVALUATION_BUCKETS = (0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5)

# Metrics every service exposes
COMMON_METRICS = (
    (Counter, "http_requests_total", "HTTP requests served", ("method", "endpoint", "status_code")),
    (Histogram, "http_request_duration_seconds", "HTTP request latency in seconds", ("method", "endpoint")),
    (Counter, "health_check_total", "Health check outcomes", ("status",)),
    (Counter, "errors_total", "Errors rendered to clients", ("error_type", "service")),
)

# Flag evaluation metrics
FLAG_METRICS = (
    (Counter, "flag_evaluations_total", "Completed flag evaluations", ("environment", "reason")),
    (Counter, "flag_evaluation_failures_total", "Flag evaluations that could not be completed", ("error_code",)),
    (Histogram, "flag_evaluation_duration_seconds", "Flag evaluation latency in seconds", ("operation",)),
    (Counter, "flag_evaluation_records_dropped_total", "Evaluation records dropped before reaching the sink",
     ("reason",)),
    (Counter, "flag_evaluation_record_failures_total", "Evaluation records the sink failed to accept", ()),
    (Gauge, "flag_evaluation_record_queue_size", "Evaluation records waiting for delivery", ()),
)

SERVICE_METRICS = {
    "flags": FLAG_METRICS,
}


class MetricsCollector:
    """Prometheus metrics of one service.

    Each collector owns its registry unless one is passed in, so several
    service instances (tests, embedded apps) can coexist in one process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        info = Info("service", "Service information", registry=self.registry)
        info.info({"service": service_name, "version": SERVICE_VERSION})

        for table in (COMMON_METRICS, SERVICE_METRICS.get(service_name, ())):
            for metric_type, name, documentation, labels in table:
                self._register(metric_type, name, documentation, labels)

    def _register(self, metric_type, name: str, documentation: str, labels):
        kwargs: Dict[str, Any] = {"registry": self.registry}
        if metric_type is Histogram and name.startswith("flag_evaluation"):
            kwargs["buckets"] = EVALUATION_BUCKETS
        self._metrics[name] = metric_type(name, documentation, list(labels), **kwargs)

    def _child(self, metric_name: str, labels: Dict[str, Any]):
        metric = self._metrics.get(metric_name)
        if metric is None or not labels:
            return metric
        return metric.labels(**labels)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.increment_counter("http_requests_total", method=method, endpoint=endpoint,
                               status_code=str(status_code))
        self.observe_histogram("http_request_duration_seconds", duration, method=method, endpoint=endpoint)

    def record_health_check(self, status: str):
        self.increment_counter("health_check_total", status=status)

    def record_error(self, error_type: str):
        self.increment_counter("errors_total", error_type=error_type, service=self.service_name)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter; unknown metric names are ignored."""
        metric = self._child(metric_name, labels)
        if metric is not None:
            metric.inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        metric = self._child(metric_name, labels)
        if metric is not None:
            metric.set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        metric = self._child(metric_name, labels)
        if metric is not None:
            metric.observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
