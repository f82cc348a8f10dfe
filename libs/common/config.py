"""Configuration management for the model bridge.

This module centralizes environment-driven configuration for the bridge
service and its tooling. It builds on ``pydantic_settings.BaseSettings`` so
configuration can be provided via environment variables, ``.env`` files, or
defaults.

Highlights
- Strongly‑typed settings with sensible defaults
- Field names match their environment variables (``ml_log_level`` is read
  from ``ML_LOG_LEVEL``); list values are read as JSON
- Small service‑specific subclasses to keep concerns clear

Usage
- Inject the appropriate config in your service entrypoint:
  ``config = ModelBridgeConfig()``
- Or select dynamically: ``config = get_config("model-bridge")``
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class for all services.

    Notes
    - Add new shared settings here so downstream services inherit them.
    - Prefer a typed field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # Environment
    ml_env: str = Field(default="local", description="Deployment environment name")

    # Observability
    ml_tracing_enabled: bool = Field(default=False, description="Export OpenTelemetry spans")
    ml_otel_exporter: str = Field(
        default="http://localhost:4318/v1/traces",
        description="OTLP/HTTP traces endpoint",
    )

    # Logging
    ml_log_level: str = Field(default="INFO", description="Root log level")
    ml_log_format: str = Field(default="json", description="``json`` or ``console``")


class ModelBridgeConfig(BaseConfig):
    """Configuration for the model bridge service.

    Extends ``BaseConfig`` with the model artifact location, the tensor
    contract of the bundled detector and ONNX Runtime session knobs.
    """

    ml_model_bridge_port: int = Field(default=9010)

    # Model artifact
    ml_model_filename: str = Field(default="best.onnx")
    ml_model_asset_root: str = Field(default="/app/bundle")
    ml_model_asset_paths: List[str] = Field(
        default_factory=lambda: [
            "flutter_assets/assets/best.onnx",
            "assets/best.onnx",
            "best.onnx",
        ]
    )
    ml_model_cache_dir: str = Field(default="/tmp/model-bridge/cache")
    ml_model_eager_load: bool = Field(default=False)

    # Tensor contract
    ml_model_input_name: str = Field(default="images")
    ml_model_input_shape: List[int] = Field(default_factory=lambda: [1, 3, 640, 640])
    ml_model_output_names: List[str] = Field(
        default_factory=lambda: ["output0", "output", "output_0"]
    )
    # Post-NMS detections (1, 300, 6); used only when the output carries no shape.
    ml_model_fallback_output_size: int = Field(default=1 * 300 * 6)

    # ONNX Runtime
    ml_ort_providers: List[str] = Field(default_factory=lambda: ["CPUExecutionProvider"])
    ml_ort_intra_op_threads: int = Field(default=0, description="0 lets ONNX Runtime decide")


def get_config(service_name: str) -> BaseConfig:
    """Get configuration for a specific service.

    Parameters
    - service_name: Literal name, currently only ``model-bridge``.

    Returns
    - A concrete ``BaseConfig`` subclass pre‑wired to read the right env vars.
    """
    config_map = {
        "model-bridge": ModelBridgeConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(service_name, BaseConfig)
    return config_class()

