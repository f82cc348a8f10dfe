"""Shared fixtures: an in-memory inference engine and a bundled model artifact."""

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pytest

from app.adapters.engine import (
    EngineSession,
    InferenceEngine,
    ResultSet,
    TensorHandle,
)
from app.loaders.artifact import DirectoryAssetBundle, ModelArtifact
from app.runtime.invoker import InferenceInvoker
from libs.common.metrics import MetricsCollector

INPUT_SHAPE = (1, 3, 640, 640)
INPUT_SIZE = 1 * 3 * 640 * 640
DETECTIONS = np.arange(1 * 300 * 6, dtype=np.float32).reshape(1, 300, 6)
_DATA_SHAPE = object()


class FakeTensor(TensorHandle):
    """Tensor double that records whether it was released."""

    def __init__(
        self,
        data: np.ndarray,
        shape: Any = _DATA_SHAPE,
        capacity: Optional[int] = None
    ):
        self.data = np.asarray(data, dtype=np.float32)
        self._shape = tuple(self.data.shape) if shape is _DATA_SHAPE else shape
        self._capacity = capacity
        self.closed = False

    @property
    def shape(self):
        return self._shape

    @property
    def capacity(self) -> int:
        return self._capacity if self._capacity is not None else int(self.data.size)

    def read_floats(self, count: int) -> np.ndarray:
        return self.data.reshape(-1)[:count].copy()

    def close(self) -> None:
        self.closed = True


class FakeResultSet(ResultSet):
    def __init__(self, tensors: Dict[str, FakeTensor]):
        self.tensors = tensors
        self.closed = False

    @property
    def names(self) -> List[str]:
        return list(self.tensors)

    def get(self, name: str) -> Optional[TensorHandle]:
        return self.tensors.get(name)

    def close(self) -> None:
        for tensor in self.tensors.values():
            tensor.close()
        self.closed = True


class FakeSession(EngineSession):
    def __init__(self, engine: "FakeEngine", path: str):
        self.engine = engine
        self.path = path
        self.closed = False
        self.runs: List[Mapping[str, TensorHandle]] = []

    @property
    def input_names(self) -> List[str]:
        return ["images"]

    @property
    def output_names(self) -> List[str]:
        return list(self.engine.session_outputs)

    def run(self, feeds: Mapping[str, TensorHandle]) -> ResultSet:
        if self.closed:
            raise RuntimeError("session closed")
        self.runs.append(dict(feeds))
        if self.engine.run_error is not None:
            raise self.engine.run_error
        result = FakeResultSet(self.engine.make_outputs())
        self.engine.results.append(result)
        return result

    def close(self) -> None:
        self.closed = True


class FakeEngine(InferenceEngine):
    """Engine double producing canned outputs.

    ``make_outputs`` builds a fresh ``{name: FakeTensor}`` map per run so each
    result set can be checked for release independently.
    """

    def __init__(self, make_outputs: Optional[Callable[[], Dict[str, FakeTensor]]] = None):
        self.make_outputs = make_outputs or (lambda: {"output0": FakeTensor(DETECTIONS)})
        self.session_outputs: Sequence[str] = ("output0",)
        self.open_error: Optional[Exception] = None
        self.run_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.sessions: List[FakeSession] = []
        self.tensors: List[FakeTensor] = []
        self.results: List[FakeResultSet] = []

    @property
    def open_count(self) -> int:
        return len(self.sessions)

    def open_session(self, model_path: str) -> EngineSession:
        if self.open_error is not None:
            raise self.open_error
        session = FakeSession(self, model_path)
        self.sessions.append(session)
        return session

    def create_tensor(self, values: np.ndarray, shape: Sequence[int]) -> TensorHandle:
        if self.create_error is not None:
            raise self.create_error
        tensor = FakeTensor(np.asarray(values).reshape(tuple(shape)))
        self.tensors.append(tensor)
        return tensor

    def all_released(self) -> bool:
        return all(t.closed for t in self.tensors) and all(r.closed for r in self.results)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def bundle_dir(tmp_path):
    """Asset bundle holding the model under ``assets/best.onnx``."""
    root = tmp_path / "bundle"
    (root / "assets").mkdir(parents=True)
    (root / "assets" / "best.onnx").write_bytes(b"onnx-model-bytes")
    return root


@pytest.fixture
def artifact(bundle_dir, tmp_path) -> ModelArtifact:
    return ModelArtifact(
        bundle=DirectoryAssetBundle(str(bundle_dir)),
        cache_dir=str(tmp_path / "cache"),
        filename="best.onnx",
        candidate_paths=["flutter_assets/assets/best.onnx", "assets/best.onnx", "best.onnx"]
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector("test-bridge")


@pytest.fixture
def invoker(engine, artifact, metrics) -> InferenceInvoker:
    return InferenceInvoker(engine=engine, artifact=artifact, metrics=metrics)


@pytest.fixture
def image_input() -> np.ndarray:
    return np.linspace(0.0, 1.0, INPUT_SIZE, dtype=np.float32)
