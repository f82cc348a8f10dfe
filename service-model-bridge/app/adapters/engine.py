"""Inference engine boundary.

Defines the small contract the invoker depends on, independent of the
runtime that executes the model:

- ``InferenceEngine.create_tensor(values, shape)`` / ``open_session(path)``
- ``EngineSession.run({input_name: tensor})`` returning a ``ResultSet``
- ``ResultSet.get(name)``, ``TensorHandle.shape``, ``TensorHandle.read_floats``
- explicit ``close()`` on sessions, result sets and tensors

``OnnxRuntimeEngine`` is the production implementation, pinned to the
ONNX Runtime Python API (``InferenceSession`` + ``OrtValue``).
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import onnxruntime as ort
import structlog

logger = structlog.get_logger("model_bridge.engine")


class TensorHandle(ABC):
    """A typed, shaped numeric buffer owned by the engine."""

    @property
    @abstractmethod
    def shape(self) -> Optional[Tuple[Optional[int], ...]]:
        """Dimensions from the tensor metadata, or ``None`` when unavailable.

        Individual dimensions may be ``None`` when the engine reports them as
        symbolic.
        """

    @property
    @abstractmethod
    def capacity(self) -> int:
        """Number of float elements actually backed by the buffer."""

    @abstractmethod
    def read_floats(self, count: int) -> np.ndarray:
        """Read the first ``count`` elements in storage (row-major) order."""

    @abstractmethod
    def close(self) -> None:
        """Release the native buffer. Must be safe to call more than once."""


class ResultSet(ABC):
    """Outputs of one forward pass, keyed by output name."""

    @property
    @abstractmethod
    def names(self) -> List[str]:
        """Output names in the order the session produced them."""

    @abstractmethod
    def get(self, name: str) -> Optional[TensorHandle]:
        """Return the tensor registered under ``name`` or ``None``."""

    @abstractmethod
    def close(self) -> None:
        """Release every tensor held by the result set."""


class EngineSession(ABC):
    """An engine-side handle bound to one loaded model artifact."""

    @property
    @abstractmethod
    def input_names(self) -> List[str]:
        pass

    @property
    @abstractmethod
    def output_names(self) -> List[str]:
        pass

    @abstractmethod
    def run(self, feeds: Mapping[str, TensorHandle]) -> ResultSet:
        """Execute one synchronous forward pass."""

    @abstractmethod
    def close(self) -> None:
        pass


class InferenceEngine(ABC):
    """Factory for sessions and input tensors."""

    @abstractmethod
    def open_session(self, model_path: str) -> EngineSession:
        pass

    @abstractmethod
    def create_tensor(self, values: np.ndarray, shape: Sequence[int]) -> TensorHandle:
        pass


class OrtTensor(TensorHandle):
    """``TensorHandle`` over an ``onnxruntime.OrtValue``."""

    def __init__(self, value: "ort.OrtValue"):
        self._value: Optional[ort.OrtValue] = value
        self._array: Optional[np.ndarray] = None

    @property
    def value(self) -> "ort.OrtValue":
        if self._value is None:
            raise RuntimeError("Tensor has been released")
        return self._value

    def _numpy(self) -> np.ndarray:
        # OrtValue.numpy() copies the buffer; materialize it once per tensor.
        if self._array is None:
            self._array = np.asarray(self.value.numpy())
        return self._array

    @property
    def shape(self) -> Optional[Tuple[Optional[int], ...]]:
        try:
            dims = self.value.shape()
        except Exception as e:
            logger.warning("Output tensor has no shape metadata", error=str(e))
            return None
        return tuple(int(d) if isinstance(d, (int, np.integer)) and d >= 0 else None for d in dims)

    @property
    def capacity(self) -> int:
        return int(self._numpy().size)

    def read_floats(self, count: int) -> np.ndarray:
        flat = self._numpy().reshape(-1)
        return flat[:count].astype(np.float32, copy=True)

    def close(self) -> None:
        self._value = None
        self._array = None


class OrtResultSet(ResultSet):
    def __init__(self, tensors: Dict[str, OrtTensor]):
        self._tensors = tensors

    @property
    def names(self) -> List[str]:
        return list(self._tensors)

    def get(self, name: str) -> Optional[TensorHandle]:
        return self._tensors.get(name)

    def close(self) -> None:
        for tensor in self._tensors.values():
            tensor.close()
        self._tensors = {}


class OrtSession(EngineSession):
    """``EngineSession`` over ``onnxruntime.InferenceSession``."""

    def __init__(self, session: "ort.InferenceSession"):
        self._session: Optional[ort.InferenceSession] = session
        self._input_names = [node.name for node in session.get_inputs()]
        self._output_names = [node.name for node in session.get_outputs()]

    @property
    def input_names(self) -> List[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> List[str]:
        return list(self._output_names)

    def run(self, feeds: Mapping[str, TensorHandle]) -> ResultSet:
        if self._session is None:
            raise RuntimeError("Session has been closed")

        ort_feeds = {}
        for name, tensor in feeds.items():
            if not isinstance(tensor, OrtTensor):
                raise TypeError(f"Input {name!r} is not an ONNX Runtime tensor")
            ort_feeds[name] = tensor.value

        values = self._session.run_with_ort_values(self._output_names, ort_feeds)
        return OrtResultSet({
            name: OrtTensor(value) for name, value in zip(self._output_names, values)
        })

    def close(self) -> None:
        # InferenceSession frees its native state once the last reference is gone.
        self._session = None


class OnnxRuntimeEngine(InferenceEngine):
    """Production engine backed by ONNX Runtime.

    Parameters
    - providers: Execution providers in priority order
    - intra_op_threads: Intra-op thread pool size (0 = runtime default)
    """

    def __init__(
        self,
        providers: Optional[Sequence[str]] = None,
        intra_op_threads: int = 0
    ):
        self.providers = list(providers or ["CPUExecutionProvider"])
        self.intra_op_threads = intra_op_threads

    def _session_options(self) -> "ort.SessionOptions":
        options = ort.SessionOptions()
        if self.intra_op_threads > 0:
            options.intra_op_num_threads = self.intra_op_threads
        return options

    def open_session(self, model_path: str) -> EngineSession:
        session = ort.InferenceSession(
            model_path,
            sess_options=self._session_options(),
            providers=self.providers
        )
        logger.info(
            "ONNX Runtime session created",
            model_path=model_path,
            providers=session.get_providers(),
            inputs=[node.name for node in session.get_inputs()],
            outputs=[node.name for node in session.get_outputs()]
        )
        return OrtSession(session)

    def create_tensor(self, values: np.ndarray, shape: Sequence[int]) -> TensorHandle:
        data = np.ascontiguousarray(values, dtype=np.float32).reshape(tuple(shape))
        return OrtTensor(ort.OrtValue.ortvalue_from_numpy(data))
