"""Tests for utils/cose.py — COSE key parsing and authenticator data extraction."""
import struct
import uuid

import cbor2
import pytest

from utils.cose import (
    FLAG_ATTESTED_CREDENTIAL_DATA, FLAG_USER_PRESENT, FLAG_USER_VERIFIED,
    extract_public_key, extract_public_key_from_auth_data,
    extract_public_key_from_cose, parse_auth_data, parse_cose_key
)
from utils.errors import AuthDataTooShortError, CoseExtractionError, KeyExtractionError

ED25519_X = bytes(range(32))
AAGUID = uuid.UUID('12345678-1234-5678-1234-567812345678')


def ed25519_cose():
    return cbor2.dumps({1: 1, 3: -8, -1: 6, -2: ED25519_X})


def build_auth_data(cose_key: bytes, credential_id: bytes = b'\x01' * 16,
                    flags: int = FLAG_USER_PRESENT | FLAG_USER_VERIFIED | FLAG_ATTESTED_CREDENTIAL_DATA,
                    sign_count: int = 7) -> bytes:
    return (
        b'\xaa' * 32
        + bytes([flags])
        + struct.pack('>I', sign_count)
        + AAGUID.bytes
        + struct.pack('>H', len(credential_id))
        + credential_id
        + cose_key
    )


class TestParseCoseKey:
    def test_ed25519(self):
        key = parse_cose_key(ed25519_cose())
        assert key.kty == 1
        assert key.alg == -8
        assert key.crv == 6
        assert key.public_key == ED25519_X

    def test_es256_uncompressed_point(self):
        x, y = b'\x11' * 32, b'\x22' * 32
        key = parse_cose_key(cbor2.dumps({1: 2, 3: -7, -1: 1, -2: x, -3: y}))
        assert key.public_key == b'\x04' + x + y

    def test_ignores_trailing_extension_data(self):
        blob = ed25519_cose() + cbor2.dumps({'credProtect': 2})
        assert parse_cose_key(blob).x == ED25519_X

    def test_not_a_map(self):
        with pytest.raises(CoseExtractionError):
            parse_cose_key(cbor2.dumps([1, 2, 3]))

    def test_garbage(self):
        with pytest.raises(CoseExtractionError):
            parse_cose_key(b'\xff')

    def test_ec2_without_y(self):
        with pytest.raises(CoseExtractionError):
            parse_cose_key(cbor2.dumps({1: 2, 3: -7, -2: b'\x11' * 32}))


class TestHeuristic:
    def test_last_32_bytes(self):
        blob = b'\x00' * 10 + ED25519_X
        assert extract_public_key_from_cose(blob) == ED25519_X

    def test_matches_parser_for_ed25519(self):
        assert extract_public_key_from_cose(ed25519_cose()) == ED25519_X

    def test_too_short(self):
        with pytest.raises(CoseExtractionError):
            extract_public_key_from_cose(b'\x00' * 31)

    def test_fallback_used_when_not_cbor(self):
        blob = b'\xff' + ED25519_X
        assert extract_public_key(blob) == ED25519_X


class TestExtractFromAuthData:
    def test_ed25519(self):
        assert extract_public_key_from_auth_data(build_auth_data(ed25519_cose())) == ED25519_X

    def test_credential_id_length_respected(self):
        auth_data = build_auth_data(ed25519_cose(), credential_id=b'\x05' * 64)
        assert extract_public_key_from_auth_data(auth_data) == ED25519_X

    def test_too_short(self):
        with pytest.raises(AuthDataTooShortError):
            extract_public_key_from_auth_data(b'\x00' * 54)

    def test_too_short_is_key_extraction_error(self):
        with pytest.raises(KeyExtractionError):
            extract_public_key_from_auth_data(b'')

    def test_no_key_material(self):
        auth_data = build_auth_data(b'\x00' * 4)
        with pytest.raises(CoseExtractionError):
            extract_public_key_from_auth_data(auth_data)


class TestParseAuthData:
    def test_full(self):
        parsed = parse_auth_data(build_auth_data(ed25519_cose()))
        assert parsed.rp_id_hash == b'\xaa' * 32
        assert parsed.sign_count == 7
        assert parsed.user_present
        assert parsed.user_verified
        assert parsed.has_attested_credential_data
        assert parsed.aaguid == str(AAGUID)
        assert parsed.credential_id == b'\x01' * 16
        assert parsed.credential_public_key == ed25519_cose()

    def test_assertion_auth_data(self):
        auth_data = b'\xaa' * 32 + bytes([FLAG_USER_PRESENT]) + struct.pack('>I', 3)
        parsed = parse_auth_data(auth_data)
        assert parsed.sign_count == 3
        assert not parsed.user_verified
        assert parsed.aaguid is None
        assert parsed.credential_public_key is None

    def test_too_short(self):
        with pytest.raises(AuthDataTooShortError):
            parse_auth_data(b'\x00' * 36)
