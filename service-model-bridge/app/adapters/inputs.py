"""Input normalization for the ``runModel`` boundary.

The channel argument is untyped: a JSON array of ints or floats, a numpy
array, an ``array.array`` or a raw native-endian float32 buffer can all
arrive. Each accepted value is classified into one ``InputRepresentation``
and converted by the converter registered for that variant into a flat,
contiguous float32 array.
"""

from array import array
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

import numpy as np

from ..runtime.errors import InvalidInputError

_INTEGRAL_TYPECODES = frozenset("bBhHiIlLqQ")


class InputRepresentation(Enum):
    """Numeric representations the channel can legally deliver."""
    INTEGRAL = "integral"
    FLOAT64 = "float64"
    FLOAT32 = "float32"


@dataclass(frozen=True)
class InputBuffer:
    """A converted input: flat float32 values plus the representation they came from."""
    values: np.ndarray
    representation: InputRepresentation

    def __len__(self) -> int:
        return int(self.values.size)


def _as_array(value: Any) -> np.ndarray:
    """Turn a supported container into an ndarray without changing its dtype."""
    if value is None:
        raise InvalidInputError("Input is null")

    if isinstance(value, np.ndarray):
        return value

    if isinstance(value, memoryview) and value.format in ("B", "b", "c"):
        value = value.tobytes()

    if isinstance(value, (bytes, bytearray)):
        if len(value) % 4 != 0:
            raise InvalidInputError(
                f"Raw float32 buffer length {len(value)} is not a multiple of 4 bytes"
            )
        return np.frombuffer(value, dtype=np.float32)

    if isinstance(value, array):
        if value.typecode not in _INTEGRAL_TYPECODES | {"f", "d"}:
            raise InvalidInputError(f"Unsupported array typecode: {value.typecode!r}")
        return np.asarray(value)

    if isinstance(value, memoryview):
        try:
            return np.asarray(value)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Unsupported buffer: {e}", cause=e) from e

    if isinstance(value, (list, tuple)):
        try:
            converted = np.asarray(value)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Input is not a flat numeric sequence: {e}", cause=e) from e
        if converted.ndim != 1:
            raise InvalidInputError(
                f"Input must be a flat sequence, got {converted.ndim} dimensions"
            )
        return converted

    raise InvalidInputError(f"Unsupported input type: {type(value).__name__}")


def detect_representation(value: Any) -> InputRepresentation:
    """Classify ``value`` into one of the supported representations.

    Raises ``InvalidInputError`` for anything that is not a numeric sequence
    (strings, mappings, booleans, ``None`` elements, ragged nesting).
    """
    return _classify(_as_array(value))


def _classify(values: np.ndarray) -> InputRepresentation:
    kind = values.dtype.kind
    if kind in ("i", "u"):
        return InputRepresentation.INTEGRAL
    if kind == "f":
        # float16 and byte-swapped float32 fit single precision exactly.
        if values.dtype.itemsize <= np.dtype(np.float32).itemsize:
            return InputRepresentation.FLOAT32
        return InputRepresentation.FLOAT64
    raise InvalidInputError(f"Input elements are not numeric (dtype={values.dtype})")


def _from_integral(values: np.ndarray) -> np.ndarray:
    return values.reshape(-1).astype(np.float32)


def _from_float64(values: np.ndarray) -> np.ndarray:
    # Rounds to nearest single-precision value.
    return values.reshape(-1).astype(np.float32)


def _from_float32(values: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(values.reshape(-1), dtype=np.float32)


_CONVERTERS: Dict[InputRepresentation, Callable[[np.ndarray], np.ndarray]] = {
    InputRepresentation.INTEGRAL: _from_integral,
    InputRepresentation.FLOAT64: _from_float64,
    InputRepresentation.FLOAT32: _from_float32,
}


def convert_input(value: Any) -> InputBuffer:
    """Convert an untyped channel argument into a flat float32 ``InputBuffer``.

    Element order is preserved; multi-dimensional numpy arrays are flattened
    in C (row-major) order.
    """
    values = _as_array(value)
    representation = _classify(values)
    converted = _CONVERTERS[representation](values)
    return InputBuffer(values=converted, representation=representation)
