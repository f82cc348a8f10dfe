"""Model bridge service main application."""

import time
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from .api.channel import MethodChannel
from .api.routes import router as api_router
from .runtime.errors import BridgeError
from .runtime.invoker import InferenceInvoker, InvokerState, create_invoker
from .runtime.metrics import get_metrics_collector
from libs.common.config import ModelBridgeConfig
from libs.common.logging import configure_logging
from libs.common.tracing import configure_tracing

logger = structlog.get_logger("model_bridge")

SERVICE_NAME = "model-bridge"


def create_app(
    config: Optional[ModelBridgeConfig] = None,
    invoker: Optional[InferenceInvoker] = None
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    - config: Service configuration; read from the environment when omitted
    - invoker: Pre-built invoker (tests inject one backed by a fake engine)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup
        settings = config or ModelBridgeConfig()
        configure_logging(SERVICE_NAME, settings.ml_log_level, settings.ml_log_format, env=settings.ml_env)

        if settings.ml_tracing_enabled:
            tracer = configure_tracing(SERVICE_NAME, settings.ml_otel_exporter, app=app)
            if tracer:
                logger.info("OpenTelemetry tracing enabled", exporter=settings.ml_otel_exporter)
            else:
                logger.warning("Tracing initialization failed")
        else:
            logger.info("OpenTelemetry tracing disabled via configuration")

        logger.info("Starting model bridge service")

        app.state.metrics_collector = get_metrics_collector(SERVICE_NAME)
        app.state.invoker = invoker or create_invoker(settings, metrics=app.state.metrics_collector)
        app.state.channel = MethodChannel(app.state.invoker, metrics=app.state.metrics_collector)

        if settings.ml_model_eager_load:
            try:
                app.state.invoker.ensure_loaded()
            except BridgeError as e:
                # runModel retries the load lazily.
                logger.warning("Eager model load failed", kind=e.kind, error=e.message)

        logger.info("Model bridge service started successfully")

        yield

        # Shutdown
        logger.info("Shutting down model bridge service")
        app.state.invoker.close()
        logger.info("Model bridge service shutdown complete")

    app = FastAPI(
        title="Model Bridge Service",
        description="Runs the bundled ONNX detector behind a method channel",
        version="0.1.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        """Collect metrics for HTTP requests."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        response.headers["X-Process-Time"] = str(duration)
        if hasattr(request.app.state, "metrics_collector"):
            request.app.state.metrics_collector.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code,
                duration=duration
            )
        return response

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint.

        The service is healthy until the invoker is torn down; an unloaded
        model is reported but does not fail the check since loading is lazy.
        """
        invoker: InferenceInvoker = request.app.state.invoker
        payload = {
            "service": SERVICE_NAME,
            "state": invoker.state.value,
            "model_loaded": invoker.is_loaded,
            "model_cached": invoker.artifact.is_cached(),
        }
        if invoker.state is InvokerState.CLOSED:
            return JSONResponse(status_code=503, content={"status": "unhealthy", **payload})
        return {"status": "healthy", **payload}

    @app.get("/metrics")
    def metrics(request: Request):
        """Prometheus metrics endpoint."""
        if hasattr(request.app.state, "metrics_collector"):
            metrics_data = request.app.state.metrics_collector.get_metrics()
            return Response(content=metrics_data, media_type="text/plain")
        return Response(content="# No metrics available\n", media_type="text/plain")

    @app.get("/")
    def root():
        """Root endpoint."""
        return {
            "service": SERVICE_NAME,
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics",
                "channel": "/api/v1/channel",
                "run_model": "/api/v1/channel/runModel",
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    settings = ModelBridgeConfig()
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.ml_model_bridge_port,
        log_level=settings.ml_log_level.lower(),
    )
