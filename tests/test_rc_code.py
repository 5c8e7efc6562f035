import pytest

from echowave.exceptions import FrameError, ShortBufferError
from echowave.rc_code import decode_rc_data, encode_rc_data
from echowave.types import RcCodeData

WIRE = bytes.fromhex("C4 B3 A2 01 18 00 03 5E 01 1F 00 01 00 00 00 00")


def test_encode_known_vector(rc_data):
    assert encode_rc_data(rc_data) == WIRE


def test_decode_known_vector(rc_data):
    assert decode_rc_data(WIRE) == rc_data


def test_encode_is_always_16_bytes():
    data = RcCodeData(code=0xFFFFFFFF, length=0xFFFF, repeat=0xFF, pulse_length=0xFFFF,
                      sync_factor=0xFFFF, one=0xFFFF, zero=0xFFFF, inverted=True)
    encoded = encode_rc_data(data)
    assert len(encoded) == 16
    assert encoded == b"\xff" * 15 + b"\x01"


_FIELD_MAX = {
    "code": 0xFFFFFFFF,
    "length": 0xFFFF,
    "repeat": 0xFF,
    "pulse_length": 0xFFFF,
    "sync_factor": 0xFFFF,
    "one": 0xFFFF,
    "zero": 0xFFFF,
}


def _edge_values(maximum):
    return sorted({0, 1, maximum >> 1, (maximum >> 1) + 1, maximum - 1, maximum})


@pytest.mark.parametrize("field, value", [
    (field, value) for field, maximum in _FIELD_MAX.items() for value in _edge_values(maximum)
])
@pytest.mark.parametrize("inverted", [False, True])
def test_decode_reverses_encode_at_field_limits(rc_data, field, value, inverted):
    values = {name: getattr(rc_data, name) for name in _FIELD_MAX}
    values[field] = value
    data = RcCodeData(**values, inverted=inverted)

    assert decode_rc_data(encode_rc_data(data)) == data


def test_inverted_flag_any_nonzero_byte_is_true():
    assert decode_rc_data(WIRE[:15] + b"\x01").inverted is True
    assert decode_rc_data(WIRE[:15] + b"\x7f").inverted is True
    assert decode_rc_data(WIRE).inverted is False


def test_decode_ignores_trailing_bytes(rc_data):
    assert decode_rc_data(WIRE + b"\xaa\xbb") == rc_data


@pytest.mark.parametrize("size", [0, 1, 15])
def test_decode_short_buffer(size):
    with pytest.raises(ShortBufferError):
        decode_rc_data(WIRE[:size])


def test_short_buffer_is_a_frame_error():
    assert issubclass(ShortBufferError, FrameError)


@pytest.mark.parametrize("field, value", [
    ("code", 1 << 32),
    ("length", -1),
    ("repeat", 256),
    ("pulse_length", 70000),
])
def test_encode_out_of_range_field(rc_data, field, value):
    values = {
        "code": rc_data.code,
        "length": rc_data.length,
        "repeat": rc_data.repeat,
        "pulse_length": rc_data.pulse_length,
        "sync_factor": rc_data.sync_factor,
        "one": rc_data.one,
        "zero": rc_data.zero,
    }
    values[field] = value
    with pytest.raises(ValueError):
        encode_rc_data(RcCodeData(**values))
