"""Metrics collection for the model bridge.

Provides a thin convenience wrapper around ``prometheus_client`` so the
bridge records HTTP, inference and model-load metrics with consistent
label sets.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per service (can be injected if needed)
- A decorator is provided for quick timing instrumentation
"""

import time
from typing import Any, Callable, Optional
from functools import wraps
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
import structlog

logger = structlog.get_logger("metrics")

# Forward passes on CPU for a 640x640 detector sit between tens of ms and seconds.
INFERENCE_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """Centralized metrics collection for the bridge.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

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

        self.inference_requests = Counter(
            'ml_inference_requests_total',
            'Total ML inference requests',
            ['model_name'],
            registry=self.registry
        )

        self.inference_duration = Histogram(
            'ml_inference_duration_seconds',
            'ML inference duration',
            ['model_name'],
            buckets=INFERENCE_BUCKETS,
            registry=self.registry
        )

        self.inference_errors = Counter(
            'ml_inference_errors_total',
            'Failed ML inference requests by error kind',
            ['model_name', 'kind'],
            registry=self.registry
        )

        self.model_load_duration = Histogram(
            'ml_model_load_duration_seconds',
            'Time spent resolving the model artifact and opening a session',
            ['model_name'],
            registry=self.registry
        )

        self.model_loaded = Gauge(
            'ml_model_loaded',
            'Whether an inference session is currently open (1) or not (0)',
            ['model_name'],
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

    def record_inference(self, model_name: str, duration: float) -> None:
        """Record a completed forward pass."""
        self.inference_requests.labels(model_name=model_name).inc()
        self.inference_duration.labels(model_name=model_name).observe(duration)

    def record_inference_error(self, model_name: str, kind: str) -> None:
        """Record a failed ``runModel`` call under its error kind tag."""
        self.inference_errors.labels(model_name=model_name, kind=kind).inc()

    def record_model_load(self, model_name: str, duration: float) -> None:
        """Record a successful model load."""
        self.model_load_duration.labels(model_name=model_name).observe(duration)
        self.model_loaded.labels(model_name=model_name).set(1)

    def set_model_loaded(self, model_name: str, loaded: bool) -> None:
        self.model_loaded.labels(model_name=model_name).set(1 if loaded else 0)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process‑wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector


def measure_time(operation: str, **labels: Any) -> Callable:
    """Decorator to measure function execution time.

    Example
    >>> @measure_time("artifact.copy", model="best.onnx")
    ... def copy(src, dst):
    ...     ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration = time.time() - start_time
                logger.info(
                    f"Operation {operation} completed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    **labels
                )
                return result
            except Exception as e:
                duration = time.time() - start_time
                logger.error(
                    f"Operation {operation} failed",
                    operation=operation,
                    duration_ms=duration * 1000,
                    error=str(e),
                    **labels
                )
                raise
        return wrapper
    return decorator
