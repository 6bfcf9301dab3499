"""
Public key extraction from WebAuthn authenticator data.

AuthData layout:
    rpIdHash            32 bytes
    flags                1 byte
    signCount            4 bytes (big-endian)
    attestedCredentialData (present when the AT flag is set):
        aaguid          16 bytes
        credIdLength     2 bytes (big-endian)
        credentialId     credIdLength bytes
        credentialPublicKey  COSE_Key (CBOR map), rest of data

COSE_Key for Ed25519:  {1: 1 (OKP), 3: -8 (EdDSA), -1: 6 (Ed25519), -2: x}
COSE_Key for ES256:    {1: 2 (EC2), 3: -7 (ES256), -1: 1 (P-256), -2: x, -3: y}

parse_cose_key() reads those labels with cbor2. extract_public_key_from_cose()
is the older trailing-32-bytes heuristic, kept as the fallback for blobs the
label parser cannot read.
"""

import io
import struct
import uuid
from dataclasses import dataclass
from typing import Optional

import cbor2

from utils.errors import AuthDataTooShortError, CoseExtractionError
from utils.logger import get_logger

logger = get_logger(__name__)

RP_ID_HASH_LENGTH = 32
FLAGS_LENGTH = 1
SIGN_COUNT_LENGTH = 4
AAGUID_LENGTH = 16
CRED_ID_LENGTH_SIZE = 2

HEADER_LENGTH = RP_ID_HASH_LENGTH + FLAGS_LENGTH + SIGN_COUNT_LENGTH + AAGUID_LENGTH
ED25519_PUBLIC_KEY_LENGTH = 32

FLAG_USER_PRESENT = 0x01
FLAG_USER_VERIFIED = 0x04
FLAG_ATTESTED_CREDENTIAL_DATA = 0x40
FLAG_EXTENSION_DATA = 0x80

# COSE labels
COSE_KTY = 1
COSE_ALG = 3
COSE_CRV = -1
COSE_X = -2
COSE_Y = -3

COSE_KTY_OKP = 1
COSE_KTY_EC2 = 2


@dataclass
class CoseKey:
    kty: int
    alg: Optional[int]
    crv: Optional[int]
    x: bytes
    y: Optional[bytes] = None

    @property
    def public_key(self) -> bytes:
        """Raw key bytes: x for OKP, uncompressed point 0x04||x||y for EC2."""
        if self.kty == COSE_KTY_EC2 and self.y is not None:
            return b'\x04' + self.x + self.y
        return self.x


@dataclass
class AuthenticatorData:
    rp_id_hash: bytes
    flags: int
    sign_count: int
    aaguid: Optional[str] = None
    credential_id: Optional[bytes] = None
    credential_public_key: Optional[bytes] = None

    @property
    def user_present(self) -> bool:
        return bool(self.flags & FLAG_USER_PRESENT)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & FLAG_USER_VERIFIED)

    @property
    def has_attested_credential_data(self) -> bool:
        return bool(self.flags & FLAG_ATTESTED_CREDENTIAL_DATA)


def parse_cose_key(cose_key: bytes) -> CoseKey:
    """
    Decode a COSE_Key CBOR map and read labels 1, 3, -1, -2 (and -3 for EC2).

    Only the first CBOR item is decoded; extension data that follows the key
    inside authenticator data is ignored.

    Raises:
        CoseExtractionError: not a CBOR map, or no usable key material.
    """
    try:
        decoded = cbor2.CBORDecoder(io.BytesIO(bytes(cose_key))).decode()
    except (cbor2.CBORDecodeError, ValueError, EOFError) as e:
        raise CoseExtractionError(f"COSE key is not valid CBOR: {e}") from e

    if not isinstance(decoded, dict):
        raise CoseExtractionError("COSE key is not a CBOR map")

    kty = decoded.get(COSE_KTY)
    x = decoded.get(COSE_X)
    if kty not in (COSE_KTY_OKP, COSE_KTY_EC2) or not isinstance(x, bytes):
        raise CoseExtractionError(f"Unsupported COSE key type: {kty!r}")

    y = decoded.get(COSE_Y)
    if kty == COSE_KTY_EC2 and not isinstance(y, bytes):
        raise CoseExtractionError("EC2 COSE key without y coordinate")

    return CoseKey(
        kty=kty,
        alg=decoded.get(COSE_ALG),
        crv=decoded.get(COSE_CRV),
        x=x,
        y=y if kty == COSE_KTY_EC2 else None,
    )


def extract_public_key_from_cose(cose_key: bytes) -> bytes:
    """
    Heuristic extraction: the last 32 bytes of the blob.

    For an Ed25519 COSE_Key the -2 entry is encoded last, so its value ends
    the map. This is an approximation, not a CBOR decoder.
    """
    if len(cose_key) >= ED25519_PUBLIC_KEY_LENGTH:
        return bytes(cose_key[-ED25519_PUBLIC_KEY_LENGTH:])
    raise CoseExtractionError("Could not extract public key from COSE format")


def extract_public_key(cose_key: bytes) -> bytes:
    """Label-based parse first, trailing-bytes heuristic if that fails."""
    try:
        return parse_cose_key(cose_key).public_key
    except CoseExtractionError as e:
        logger.debug(f"COSE label parse failed ({e}); using trailing-bytes heuristic")
        return extract_public_key_from_cose(cose_key)


def extract_public_key_from_auth_data(auth_data: bytes) -> bytes:
    """
    Parse the fixed authenticator data header and return the credential
    public key carried in the attested credential data.

    Raises:
        AuthDataTooShortError: fewer bytes than header + length field.
        CoseExtractionError: the remaining COSE blob holds no key.
    """
    if len(auth_data) < HEADER_LENGTH + CRED_ID_LENGTH_SIZE:
        raise AuthDataTooShortError("AuthData too short to contain credential data")

    (cred_id_length,) = struct.unpack_from('>H', auth_data, HEADER_LENGTH)
    public_key_start = HEADER_LENGTH + CRED_ID_LENGTH_SIZE + cred_id_length
    return extract_public_key(bytes(auth_data[public_key_start:]))


def parse_auth_data(auth_data: bytes) -> AuthenticatorData:
    """Parse all authenticator data fields; attested data only if AT is set."""
    base_length = RP_ID_HASH_LENGTH + FLAGS_LENGTH + SIGN_COUNT_LENGTH
    if len(auth_data) < base_length:
        raise AuthDataTooShortError("AuthData shorter than 37 bytes")

    rp_id_hash = bytes(auth_data[:RP_ID_HASH_LENGTH])
    flags = auth_data[RP_ID_HASH_LENGTH]
    (sign_count,) = struct.unpack_from('>I', auth_data, RP_ID_HASH_LENGTH + FLAGS_LENGTH)
    parsed = AuthenticatorData(rp_id_hash=rp_id_hash, flags=flags, sign_count=sign_count)

    if not parsed.has_attested_credential_data:
        return parsed

    if len(auth_data) < HEADER_LENGTH + CRED_ID_LENGTH_SIZE:
        raise AuthDataTooShortError("AuthData too short to contain credential data")

    parsed.aaguid = str(uuid.UUID(bytes=bytes(auth_data[base_length:HEADER_LENGTH])))
    (cred_id_length,) = struct.unpack_from('>H', auth_data, HEADER_LENGTH)
    cred_id_start = HEADER_LENGTH + CRED_ID_LENGTH_SIZE
    parsed.credential_id = bytes(auth_data[cred_id_start:cred_id_start + cred_id_length])
    parsed.credential_public_key = bytes(auth_data[cred_id_start + cred_id_length:])
    return parsed
