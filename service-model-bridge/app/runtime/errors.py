"""Error taxonomy for the model bridge.

Every failure ``runModel`` can surface is a ``BridgeError`` subclass carrying
a stable ``kind`` tag. The method channel turns these into error envelopes;
nothing else in the service needs to know about tags.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for errors reported across the method channel."""

    kind = "INFERENCE_ERROR"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class InvalidInputError(BridgeError):
    """Input is missing or cannot be converted to a float32 buffer."""

    kind = "INVALID_ARGUMENT"


class ModelLoadError(BridgeError):
    """Model artifact not found, or the inference session could not be opened."""

    kind = "MODEL_LOAD_ERROR"


class InferenceError(BridgeError):
    """The engine failed while building tensors or executing a forward pass."""

    kind = "INFERENCE_ERROR"


class OutputTooSmallError(BridgeError):
    """Output buffer holds fewer elements than its shape declares."""

    kind = "OUTPUT_TOO_SMALL"


class OutputNotFoundError(BridgeError):
    """No output tensor could be located by name or position."""

    kind = "OUTPUT_NOT_FOUND"


class InvokerClosedError(BridgeError):
    """The invoker was torn down and can no longer run the model."""

    kind = "INVOKER_CLOSED"
