"""Binary vector codec.

Vectors are stored as little-endian IEEE-754 float32 values, 4 bytes each,
with no header or length prefix. A reader that knows the dimensionality can
decode the bytes without any other metadata.
"""

from typing import List, Sequence

import numpy as np

from core.errors import MalformedVectorError

FLOAT_SIZE = 4
_DTYPE = np.dtype("<f4")


def encode(values: Sequence[float]) -> bytes:
    """Encode a vector of floats into packed little-endian float32 bytes."""
    return np.asarray(values, dtype=_DTYPE).reshape(-1).tobytes()


def decode_array(data: bytes) -> np.ndarray:
    """Decode packed float32 bytes into a 1-D numpy array."""
    if len(data) % FLOAT_SIZE:
        raise MalformedVectorError(len(data))
    return np.frombuffer(data, dtype=_DTYPE)


def decode(data: bytes) -> List[float]:
    """Decode packed float32 bytes into a list of Python floats."""
    return decode_array(data).tolist()


def dimensions_of(data: bytes) -> int:
    """Return the number of float32 values held in ``data``."""
    if len(data) % FLOAT_SIZE:
        raise MalformedVectorError(len(data))
    return len(data) // FLOAT_SIZE
