"""Method channel for the model bridge.

The application layer reaches the bridge through an untyped method call:
a method name plus a map of named arguments. ``MethodChannel`` dispatches
``runModel`` to the invoker and converts every outcome into a
``ChannelResult``; no exception escapes ``handle``.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog

from libs.common.metrics import MetricsCollector
from ..runtime.errors import BridgeError, InferenceError, InvalidInputError
from ..runtime.invoker import InferenceInvoker

logger = structlog.get_logger("model_bridge.channel")

CHANNEL_NAME = "poultech/onnx"


@dataclass
class ChannelResult:
    """Outcome of one method call.

    ``status`` is ``success``, ``error`` or ``not_implemented``. Errors carry
    a kind tag in ``code`` and a human-readable ``message``.
    """
    status: str
    result: Optional[List[float]] = None
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, result: List[float]) -> "ChannelResult":
        return cls(status="success", result=result)

    @classmethod
    def error(cls, code: str, message: str) -> "ChannelResult":
        return cls(status="error", code=code, message=message)

    @classmethod
    def not_implemented(cls, method: str) -> "ChannelResult":
        return cls(
            status="not_implemented",
            code="NOT_IMPLEMENTED",
            message=f"Method {method!r} is not implemented on channel {CHANNEL_NAME}"
        )

    @property
    def is_success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status}
        if self.result is not None:
            payload["result"] = self.result
        if self.code is not None:
            payload["code"] = self.code
        if self.message is not None:
            payload["message"] = self.message
        return payload


class MethodChannel:
    """Dispatches named method calls to the inference invoker.

    Calls are serialised with a lock because the invoker's session is not
    assumed safe for concurrent forward passes.
    """

    def __init__(self, invoker: InferenceInvoker, metrics: Optional[MetricsCollector] = None):
        self.invoker = invoker
        self.metrics = metrics
        self._call_lock = threading.Lock()
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], ChannelResult]] = {
            "runModel": self._run_model,
        }

    @property
    def methods(self) -> List[str]:
        return sorted(self._handlers)

    def handle(self, method: str, arguments: Optional[Mapping[str, Any]] = None) -> ChannelResult:
        """Invoke ``method`` with ``arguments`` and report the outcome."""
        handler = self._handlers.get(method)
        if handler is None:
            logger.warning("Unknown method", method=method)
            return ChannelResult.not_implemented(method)

        logger.debug(f"{method} called")
        with self._call_lock:
            return handler(arguments or {})

    def _run_model(self, arguments: Mapping[str, Any]) -> ChannelResult:
        try:
            input_value = arguments.get("input")
            if input_value is None:
                raise InvalidInputError("Input is null")

            output = self.invoker.run_model(input_value)
            return ChannelResult.success(output)

        except BridgeError as e:
            logger.error("Error in runModel", kind=e.kind, error=e.message)
            self._record_error(e.kind)
            return ChannelResult.error(e.kind, e.message)
        except Exception as e:
            logger.exception("Unexpected error in runModel", error=str(e))
            self._record_error(InferenceError.kind)
            return ChannelResult.error(InferenceError.kind, str(e))

    def _record_error(self, kind: str) -> None:
        if self.metrics:
            self.metrics.record_inference_error(self.invoker.model_name, kind)
