import struct

import numpy as np
import pytest

from core.errors import MalformedVectorError
from vector_store import codec


@pytest.mark.unit
def test_encode_is_little_endian_float32_without_header():
    data = codec.encode([1.0, -2.5])
    assert data == struct.pack("<ff", 1.0, -2.5)
    assert len(data) == 8


@pytest.mark.unit
def test_round_trip_is_bit_exact():
    rng = np.random.default_rng(42)
    values = rng.standard_normal(384).astype("float32").tolist()
    encoded = codec.encode(values)
    assert len(encoded) == 4 * len(values)
    assert codec.decode(encoded) == values


@pytest.mark.unit
def test_round_trip_extreme_finite_values():
    info = np.finfo(np.float32)
    values = [float(info.max), float(info.min), float(info.tiny), 0.0, -0.0]
    decoded = codec.decode(codec.encode(values))
    assert decoded == values
    assert np.signbit(decoded[-1])


@pytest.mark.unit
def test_empty_vector():
    assert codec.encode([]) == b""
    assert codec.decode(b"") == []


@pytest.mark.unit
@pytest.mark.parametrize("length", [1, 3, 5, 7])
def test_decode_rejects_partial_floats(length):
    with pytest.raises(MalformedVectorError) as excinfo:
        codec.decode(b"\x00" * length)
    assert excinfo.value.length == length


@pytest.mark.unit
def test_malformed_vector_error_is_value_error():
    with pytest.raises(ValueError):
        codec.decode_array(b"\x01\x02")


@pytest.mark.unit
def test_decode_array_and_dimensions():
    data = codec.encode([0.25, 0.5, 0.75])
    array = codec.decode_array(data)
    assert array.dtype == np.float32
    assert array.tolist() == [0.25, 0.5, 0.75]
    assert codec.dimensions_of(data) == 3
