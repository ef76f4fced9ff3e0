import pytest

from apkcerts.ber import BerError, ber_to_der
from apkcerts.der import decode_integer, parse_all, parse_element


def test_ber_to_der_indefinite():
    ber = bytes([0x30, 0x80, 0x02, 0x01, 0x01, 0x00, 0x00])
    expected = bytes([0x30, 0x03, 0x02, 0x01, 0x01])
    der = ber_to_der(ber)
    assert der == expected
    assert ber_to_der(der) == der
    element, rest = parse_element(der)
    assert rest == b""
    (number,) = parse_all(element.content)
    assert decode_integer(number.content) == 1


@pytest.mark.parametrize(
    "data, message",
    [
        (bytes([0x30, 0x85]), "length too long"),
        (bytes([0x30, 0x84, 0x80, 0x0, 0x0, 0x0]), "length is negative"),
        (bytes([0x30, 0x80, 0x1, 0x2, 0x1, 0x2]), "Invalid BER format"),
        (bytes([0x30, 0x03, 0x01, 0x02]), "length is more than available data"),
    ],
)
def test_ber_to_der_negatives(data, message):
    with pytest.raises(BerError, match=message):
        ber_to_der(data)


def test_ber_to_der_nested_multiple_indefinite():
    ber = bytes(
        [0x30, 0x80, 0x30, 0x80, 0x02, 0x01, 0x01, 0x00, 0x00,
         0x30, 0x80, 0x02, 0x01, 0x02, 0x00, 0x00, 0x00, 0x00]
    )
    expected = bytes([0x30, 0x0A, 0x30, 0x03, 0x02, 0x01, 0x01, 0x30, 0x03, 0x02, 0x01, 0x02])
    der = ber_to_der(ber)
    assert der == expected
    assert ber_to_der(der) == der
    element, rest = parse_element(der)
    assert rest == b""
    numbers = [decode_integer(parse_all(nest.content)[0].content) for nest in parse_all(element.content)]
    assert numbers == [1, 2]


def test_empty_input():
    with pytest.raises(BerError, match="input ber is empty"):
        ber_to_der(b"")


def test_primitive_indefinite_rejected():
    with pytest.raises(BerError, match="must have constructed encoding"):
        ber_to_der(bytes([0x04, 0x80, 0x00, 0x00]))


def test_long_form_length_reencoded_minimally():
    assert ber_to_der(bytes([0x30, 0x81, 0x03, 0x02, 0x01, 0x01])) == bytes([0x30, 0x03, 0x02, 0x01, 0x01])


def test_trailing_data_ignored():
    der = bytes([0x30, 0x03, 0x02, 0x01, 0x01])
    assert ber_to_der(der + b"\xaa\xbb") == der


def test_truncated_input():
    with pytest.raises(BerError):
        ber_to_der(bytes([0x30]))