"""Common utilities shared by the bridge service and its scripts.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``tracing``: OpenTelemetry setup and model-operation spans.

Import pattern:
- from libs.common.config import ModelBridgeConfig
- from libs.common.logging import configure_logging
"""
