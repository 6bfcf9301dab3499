"""
Byte <-> string codecs shared by every passkey component.

    base64url   WebAuthn wire format (credential ids, challenges, signatures)
    hex         backend-compatible public keys and signatures
    base58btc   did:key multibase ('z' prefix)
"""

import base64
import binascii
import re

import base58

from utils.errors import CodecError, InvalidBase58CharacterError, OddLengthHexError

BASE58_ALPHABET = base58.BITCOIN_ALPHABET.decode('ascii')
MULTIBASE_BASE58BTC_PREFIX = 'z'

_HEX_RE = re.compile(r'^[0-9a-fA-F]*$')


def base64url_encode(data: bytes) -> str:
    """Base64 with '-_' instead of '+/', padding stripped."""
    return base64.urlsafe_b64encode(bytes(data)).decode('ascii').rstrip('=')


def base64url_decode(s: str) -> bytes:
    padding = (4 - len(s) % 4) % 4
    try:
        return base64.urlsafe_b64decode(s + '=' * padding)
    except (binascii.Error, ValueError) as e:
        raise CodecError(f"Invalid base64url string: {e}") from e


def hex_encode(data: bytes) -> str:
    return bytes(data).hex()


def hex_decode(s: str) -> bytes:
    """Decode a hex string, tolerating an optional 0x prefix."""
    clean = s[2:] if s[:2] in ('0x', '0X') else s
    if len(clean) % 2 != 0:
        raise OddLengthHexError("Hex string must have even length")
    if not _HEX_RE.match(clean):
        raise CodecError(f"Invalid hex string: {s!r}")
    return bytes.fromhex(clean)


def base64url_to_hex(s: str) -> str:
    return hex_encode(base64url_decode(s))


def hex_to_base64url(s: str) -> str:
    return base64url_encode(hex_decode(s))


def base58btc_encode(data: bytes) -> str:
    """
    Bitcoin-alphabet base58. Each leading zero byte becomes a leading '1',
    so b'\\x00\\x00\\x01' encodes to '112'.
    """
    return base58.b58encode(bytes(data)).decode('ascii')


def base58btc_decode(s: str) -> bytes:
    for char in s:
        if char not in BASE58_ALPHABET:
            raise InvalidBase58CharacterError(char)
    return base58.b58decode(s)


def multibase_encode(data: bytes) -> str:
    return MULTIBASE_BASE58BTC_PREFIX + base58btc_encode(data)


def multibase_decode(s: str) -> bytes:
    if not s.startswith(MULTIBASE_BASE58BTC_PREFIX):
        raise CodecError(f"Unsupported multibase prefix: {s[:1]!r}")
    return base58btc_decode(s[1:])
