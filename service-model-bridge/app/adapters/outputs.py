"""Output extraction for a single forward pass.

Locates the primary output tensor, sizes it from its own shape metadata and
reads it back as a flat list of floats.
"""

from typing import List, Optional, Sequence, Tuple

import structlog

from .engine import EngineSession, ResultSet, TensorHandle
from ..runtime.errors import OutputNotFoundError, OutputTooSmallError

logger = structlog.get_logger("model_bridge.outputs")


def locate_output(
    result_set: ResultSet,
    session: EngineSession,
    candidate_names: Sequence[str]
) -> Tuple[str, TensorHandle]:
    """Find the primary output tensor.

    Order
    1. Each name in ``candidate_names``
    2. The first output name registered by the session
    3. The first tensor present in the result set
    """
    for name in candidate_names:
        tensor = result_set.get(name)
        if tensor is not None:
            logger.debug("Found output by candidate name", output_name=name)
            return name, tensor

    session_outputs = session.output_names
    if session_outputs:
        first = session_outputs[0]
        tensor = result_set.get(first)
        if tensor is not None:
            logger.debug("Using first output registered by session", output_name=first)
            return first, tensor

    result_names = result_set.names
    if result_names:
        tensor = result_set.get(result_names[0])
        if tensor is not None:
            logger.debug("Using first output in result set", output_name=result_names[0])
            return result_names[0], tensor

    raise OutputNotFoundError(
        f"Could not find output tensor in result. Tried: {', '.join(candidate_names)}; "
        f"session outputs: {session_outputs}"
    )


def element_count(shape: Optional[Sequence[Optional[int]]], fallback: int) -> int:
    """Product of ``shape``, or ``fallback`` when the shape is unknown."""
    if shape is None or any(dim is None or dim < 0 for dim in shape):
        logger.warning("Output shape unavailable, using expected size", shape=shape, fallback=fallback)
        return fallback

    count = 1
    for dim in shape:
        count *= int(dim)
    return count


def read_output(tensor: TensorHandle, fallback_count: int) -> List[float]:
    """Read exactly as many floats as the tensor's shape declares."""
    shape = tensor.shape
    total = element_count(shape, fallback_count)
    capacity = tensor.capacity

    logger.debug("Output tensor", shape=shape, total_size=total, capacity=capacity)

    if capacity < total:
        raise OutputTooSmallError(
            f"Output buffer too small. Capacity: {capacity}, Expected: {total}"
        )

    return tensor.read_floats(total).tolist()
