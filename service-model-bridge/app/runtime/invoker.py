"""Inference invoker for the bundled detector.

Owns one lazily-opened inference session bound to the cached model artifact
and exposes ``run_model``: convert the input, make sure the session exists,
run one forward pass and return the primary output flattened to floats.

State machine
- ``UNLOADED`` → ``LOADING`` → ``READY``
- a failed load falls back to ``UNLOADED`` so the next call can retry
- ``close()`` moves any state to terminal ``CLOSED``
"""

import threading
import time
from enum import Enum
from typing import Any, List, Optional, Sequence

import structlog

from libs.common.config import ModelBridgeConfig
from libs.common.metrics import MetricsCollector
from libs.common.tracing import MLTracer, get_ml_tracer
from .errors import (
    BridgeError,
    InferenceError,
    InvalidInputError,
    InvokerClosedError,
    ModelLoadError,
)
from ..adapters.engine import (
    EngineSession,
    InferenceEngine,
    OnnxRuntimeEngine,
    ResultSet,
    TensorHandle,
)
from ..adapters.inputs import convert_input
from ..adapters.outputs import locate_output, read_output
from ..loaders.artifact import DirectoryAssetBundle, ModelArtifact

logger = structlog.get_logger("model_bridge.invoker")


class InvokerState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    CLOSED = "closed"


class InferenceInvoker:
    """Runs the bundled model on one input buffer at a time.

    Parameters
    - engine: Engine used to open the session and build tensors
    - artifact: Resolves the on-disk model file
    - input_name: Input identifier the model binds its image tensor to
    - input_shape: Fixed input tensor shape, e.g. ``(1, 3, 640, 640)``
    - output_names: Conventional output identifiers, tried in order
    - fallback_output_size: Element count used when the output has no shape
    - metrics: Optional collector for inference/load metrics
    - tracer: Optional tracer; defaults to the service tracer

    ``run_model`` is not serialised here; callers must not run forward passes
    concurrently. Only the lazy-load transition is guarded.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        artifact: ModelArtifact,
        input_name: str = "images",
        input_shape: Sequence[int] = (1, 3, 640, 640),
        output_names: Sequence[str] = ("output0", "output", "output_0"),
        fallback_output_size: int = 1 * 300 * 6,
        metrics: Optional[MetricsCollector] = None,
        tracer: Optional[MLTracer] = None
    ):
        self.engine = engine
        self.artifact = artifact
        self.input_name = input_name
        self.input_shape = tuple(int(d) for d in input_shape)
        self.output_names = list(output_names)
        self.fallback_output_size = fallback_output_size
        self.metrics = metrics
        self.tracer = tracer or get_ml_tracer("model-bridge")

        self.expected_input_size = 1
        for dim in self.input_shape:
            self.expected_input_size *= dim

        self._session: Optional[EngineSession] = None
        self._state = InvokerState.UNLOADED
        self._load_lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self.artifact.filename

    @property
    def state(self) -> InvokerState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state is InvokerState.READY and self._session is not None

    def ensure_loaded(self) -> EngineSession:
        """Resolve the artifact and open the session on first use.

        Idempotent: once ``READY`` the existing session is returned without
        touching the artifact or the engine again.
        """
        session = self._session
        if self._state is InvokerState.READY and session is not None:
            return session

        with self._load_lock:
            if self._state is InvokerState.CLOSED:
                raise InvokerClosedError("Inference invoker has been closed")
            if self._state is InvokerState.READY and self._session is not None:
                return self._session

            self._state = InvokerState.LOADING
            start_time = time.time()
            logger.info("Loading ONNX model", model_name=self.model_name)

            try:
                with self.tracer.trace_model_load(self.model_name):
                    model_path = self.artifact.resolve()
                    try:
                        session = self.engine.open_session(str(model_path))
                    except Exception as e:
                        raise ModelLoadError(f"Failed to load ONNX model: {e}", cause=e) from e
            except BaseException as e:
                self._state = InvokerState.UNLOADED
                logger.error("Failed to load ONNX model", model_name=self.model_name, error=str(e))
                raise

            self._session = session
            self._state = InvokerState.READY

            duration = time.time() - start_time
            if self.metrics:
                self.metrics.record_model_load(self.model_name, duration)
            logger.info(
                "ONNX model loaded successfully",
                model_name=self.model_name,
                model_path=str(model_path),
                load_ms=duration * 1000
            )
            return session

    def run_model(self, input_value: Any) -> List[float]:
        """Run one forward pass and return the flattened primary output.

        Raises
        - ``InvalidInputError``: input missing, unconvertible or wrong length
        - ``ModelLoadError``: the model could not be loaded
        - ``InferenceError``: tensor creation or execution failed
        - ``OutputNotFoundError`` / ``OutputTooSmallError``: unusable output
        - ``InvokerClosedError``: called after ``close()``
        """
        if self._state is InvokerState.CLOSED:
            raise InvokerClosedError("Inference invoker has been closed")

        if input_value is None:
            raise InvalidInputError("Input is null")

        buffer = convert_input(input_value)
        logger.debug(
            "Converted input",
            representation=buffer.representation.value,
            input_size=len(buffer),
            expected=self.expected_input_size
        )
        if len(buffer) != self.expected_input_size:
            raise InvalidInputError(
                f"Input size {len(buffer)} does not match expected {self.expected_input_size} "
                f"for shape {list(self.input_shape)}"
            )

        session = self.ensure_loaded()

        start_time = time.time()
        with self.tracer.trace_model_inference(self.model_name, input_count=len(buffer)):
            output = self._forward(session, buffer.values)
        duration = time.time() - start_time

        if self.metrics:
            self.metrics.record_inference(self.model_name, duration)
        logger.info(
            "Inference completed",
            model_name=self.model_name,
            output_size=len(output),
            latency_ms=duration * 1000
        )
        return output

    def _forward(self, session: EngineSession, values) -> List[float]:
        input_tensor: Optional[TensorHandle] = None
        outputs: Optional[ResultSet] = None
        try:
            try:
                input_tensor = self.engine.create_tensor(values, self.input_shape)
                outputs = session.run({self.input_name: input_tensor})
            except BridgeError:
                raise
            except Exception as e:
                raise InferenceError(f"Failed to run inference: {e}", cause=e) from e

            output_name, output_tensor = locate_output(outputs, session, self.output_names)
            logger.debug("Selected output tensor", output_name=output_name)
            try:
                return read_output(output_tensor, self.fallback_output_size)
            except BridgeError:
                raise
            except Exception as e:
                raise InferenceError(f"Failed to read output {output_name!r}: {e}", cause=e) from e
        finally:
            if input_tensor is not None:
                self._release(input_tensor, "input tensor")
            if outputs is not None:
                self._release(outputs, "outputs")

    @staticmethod
    def _release(resource, label: str) -> None:
        try:
            resource.close()
        except Exception as e:
            logger.warning("Error closing resource", resource=label, error=str(e))

    def close(self) -> None:
        """Release the session. The invoker cannot be used afterwards."""
        with self._load_lock:
            if self._state is InvokerState.CLOSED:
                return
            session, self._session = self._session, None
            self._state = InvokerState.CLOSED

        if session is not None:
            self._release(session, "session")
            logger.info("Inference session released", model_name=self.model_name)
        if self.metrics:
            self.metrics.set_model_loaded(self.model_name, False)


def create_invoker(
    config: ModelBridgeConfig,
    engine: Optional[InferenceEngine] = None,
    metrics: Optional[MetricsCollector] = None
) -> InferenceInvoker:
    """Build an invoker wired from ``ModelBridgeConfig``.

    Uses ONNX Runtime and the directory asset bundle unless an engine is
    supplied.
    """
    artifact = ModelArtifact(
        bundle=DirectoryAssetBundle(config.ml_model_asset_root),
        cache_dir=config.ml_model_cache_dir,
        filename=config.ml_model_filename,
        candidate_paths=config.ml_model_asset_paths
    )
    if engine is None:
        engine = OnnxRuntimeEngine(
            providers=config.ml_ort_providers,
            intra_op_threads=config.ml_ort_intra_op_threads
        )
    return InferenceInvoker(
        engine=engine,
        artifact=artifact,
        input_name=config.ml_model_input_name,
        input_shape=config.ml_model_input_shape,
        output_names=config.ml_model_output_names,
        fallback_output_size=config.ml_model_fallback_output_size,
        metrics=metrics
    )
