"""Metrics collection for platform services.

Provides a thin convenience wrapper around ``prometheus_client`` so services
can consistently record HTTP and embedding generator metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for testing)
- The embedding worker records into the collector from its own thread;
  ``prometheus_client`` metrics are thread-safe
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection for the embedding services.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        # HTTP metrics
        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        # Embedding generator metrics
        self.embedding_requests = Counter(
            'ml_embedding_requests_total',
            'Total embedding generation requests served by the worker',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'ml_embedding_duration_seconds',
            'Embedding inference duration inside the worker',
            ['model_name'],
            registry=self.registry
        )

        self.embedding_inputs = Counter(
            'ml_embedding_inputs_total',
            'Total input texts embedded',
            ['model_name'],
            registry=self.registry
        )

        self.queue_depth = Gauge(
            'ml_embedding_queue_depth',
            'Requests waiting in the embedding queue',
            registry=self.registry
        )

        self.queue_rejections = Counter(
            'ml_embedding_queue_rejections_total',
            'Requests rejected because the embedding queue was full',
            registry=self.registry
        )

        self.models_loaded = Gauge(
            'ml_embedding_models_loaded',
            'Number of embedding models loaded by the worker',
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_embedding(
        self,
        model_name: str,
        status: str,
        duration: Optional[float] = None,
        input_count: int = 0
    ) -> None:
        """Record one request served by the embedding worker.

        ``status`` is ``ok``, ``model_not_found`` or ``model_error``.
        Duration is only observed when inference actually ran.
        """
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        if duration is not None:
            self.embedding_duration.labels(model_name=model_name).observe(duration)
        if input_count:
            self.embedding_inputs.labels(model_name=model_name).inc(input_count)

    def set_queue_depth(self, depth: int) -> None:
        """Set the number of queued embedding requests."""
        self.queue_depth.set(depth)

    def record_queue_rejection(self) -> None:
        """Record an enqueue rejected for lack of capacity."""
        self.queue_rejections.inc()

    def set_models_loaded(self, count: int) -> None:
        """Set the number of loaded embedding models."""
        self.models_loaded.set(count)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
        logger.debug("Metrics collector created", service=service_name)
    return _metrics_collector
