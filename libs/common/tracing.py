"""Distributed tracing configuration for the model bridge.

Wraps OpenTelemetry setup for an OTLP/HTTP collector with optional
auto‑instrumentation for FastAPI. Also provides small conveniences for
spans and scoped context managers used by the inference runtime.

When tracing is not configured the OpenTelemetry API hands out no-op
tracers, so ``MLTracer`` is always safe to use.
"""

import os
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
import structlog

logger = structlog.get_logger("tracing")


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4318/v1/traces",
    app: Any = None
) -> Optional[trace.Tracer]:
    """Configure distributed tracing for a service.

    Parameters
    - service_name: Logical service identifier used in trace resources
    - otlp_endpoint: OTLP/HTTP collector endpoint for exporting spans
    - app: Optional FastAPI application to instrument

    Returns
    - A tracer instance for ad‑hoc span creation, or ``None`` on failure
    """
    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": "0.1.0",
                "deployment.environment": os.getenv("ML_ENV", "local")
            })
        )

        span_processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        tracer_provider.add_span_processor(span_processor)

        trace.set_tracer_provider(tracer_provider)
        tracer = trace.get_tracer(service_name)

        if app is not None:
            try:
                FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
                logger.info("FastAPI instrumentation enabled")
            except Exception as e:
                # Spans from the runtime still export without HTTP instrumentation.
                logger.warning("Failed to enable FastAPI instrumentation", error=str(e))

        logger.info(
            "Distributed tracing configured",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint
        )

        return tracer

    except Exception as e:
        logger.error("Failed to configure tracing", error=str(e))
        return None


def create_span(
    tracer: trace.Tracer,
    operation_name: str,
    **attributes
) -> trace.Span:
    """Create a new span with attributes."""
    span = tracer.start_span(operation_name)

    for key, value in attributes.items():
        span.set_attribute(key, str(value))

    return span


class TracingContext:
    """Context manager for tracing operations.

    Starts a span on entry and ensures it ends, recording success or error.
    """

    def __init__(self, tracer: trace.Tracer, operation_name: str, **attributes):
        self.tracer = tracer
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Optional[trace.Span] = None

    def __enter__(self):
        self.span = create_span(self.tracer, self.operation_name, **self.attributes)
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.span:
            if exc_type is not None:
                self.span.set_status(
                    Status(StatusCode.ERROR, f"{exc_type.__name__}: {exc_val}")
                )
            else:
                self.span.set_status(Status(StatusCode.OK))

            self.span.end()


class MLTracer:
    """ML-specific tracing utilities.

    Keeps span names and attributes for model operations consistent.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.tracer = trace.get_tracer(service_name)

    def trace_model_inference(
        self,
        model_name: str,
        input_count: int,
        **attributes
    ) -> TracingContext:
        """Trace one forward pass."""
        return TracingContext(
            self.tracer,
            "model.inference",
            model_name=model_name,
            input_count=input_count,
            **attributes
        )

    def trace_model_load(self, model_name: str, **attributes) -> TracingContext:
        """Trace artifact resolution and session construction."""
        return TracingContext(
            self.tracer,
            "model.load",
            model_name=model_name,
            **attributes
        )


def get_ml_tracer(service_name: str) -> MLTracer:
    """Get ML-specific tracer for a service."""
    return MLTracer(service_name)
