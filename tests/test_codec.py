"""Tests for utils/codec.py — base64url, hex and base58btc conversions."""
import pytest

from utils.codec import (
    base58btc_decode, base58btc_encode, base64url_decode, base64url_encode,
    base64url_to_hex, hex_decode, hex_encode, hex_to_base64url,
    multibase_decode, multibase_encode
)
from utils.errors import CodecError, InvalidBase58CharacterError, OddLengthHexError


class TestBase64Url:
    def test_hello(self):
        assert base64url_encode(bytes([72, 101, 108, 108, 111])) == 'SGVsbG8'

    def test_hello_roundtrip(self):
        assert base64url_decode('SGVsbG8') == b'Hello'

    def test_no_padding(self):
        assert '=' not in base64url_encode(b'\x00')

    def test_url_safe_alphabet(self):
        encoded = base64url_encode(b'\xfb\xff\xfe')
        assert '+' not in encoded and '/' not in encoded
        assert base64url_decode(encoded) == b'\xfb\xff\xfe'

    def test_empty(self):
        assert base64url_encode(b'') == ''
        assert base64url_decode('') == b''

    def test_invalid_length_raises(self):
        with pytest.raises(CodecError):
            base64url_decode('a')


class TestHex:
    def test_encode_lowercase(self):
        assert hex_encode(bytes([0, 15, 255])) == '000fff'

    def test_prefix_ignored(self):
        assert hex_decode('0xdeadbeef') == hex_decode('deadbeef') == b'\xde\xad\xbe\xef'

    def test_upper_case_prefix_and_digits(self):
        assert hex_decode('0XDEADBEEF') == b'\xde\xad\xbe\xef'

    def test_odd_length_raises(self):
        with pytest.raises(OddLengthHexError):
            hex_decode('abc')

    def test_non_hex_raises(self):
        with pytest.raises(CodecError):
            hex_decode('zz')

    def test_cross_conversions(self):
        assert base64url_to_hex('SGVsbG8') == '48656c6c6f'
        assert hex_to_base64url('48656c6c6f') == 'SGVsbG8'


class TestBase58Btc:
    def test_leading_zeros(self):
        encoded = base58btc_encode(bytes([0, 0, 1]))
        assert encoded.startswith('11')
        assert base58btc_decode(encoded) == bytes([0, 0, 1])

    def test_all_zeros(self):
        assert base58btc_encode(b'\x00\x00\x00') == '111'
        assert base58btc_decode('111') == b'\x00\x00\x00'

    def test_random_roundtrip(self):
        data = bytes(range(64))
        assert base58btc_decode(base58btc_encode(data)) == data

    @pytest.mark.parametrize('char', ['0', 'O', 'I', 'l', '+'])
    def test_invalid_character(self, char):
        with pytest.raises(InvalidBase58CharacterError) as exc_info:
            base58btc_decode('abc' + char)
        assert exc_info.value.char == char

    def test_invalid_character_is_codec_error(self):
        with pytest.raises(CodecError):
            base58btc_decode('0')


class TestMultibase:
    def test_z_prefix(self):
        assert multibase_encode(b'\x01\x02').startswith('z')

    def test_roundtrip(self):
        assert multibase_decode(multibase_encode(b'\xed\x01abc')) == b'\xed\x01abc'

    def test_unknown_prefix_raises(self):
        with pytest.raises(CodecError):
            multibase_decode('f0102')
