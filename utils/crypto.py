"""
Ed25519 key helpers.

Used by the software authenticator and by did:key derivation from a raw
private key. Raw 32-byte encodings throughout.
"""

import hashlib
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding, PublicFormat, PrivateFormat, NoEncryption
)


def generate_ed25519_keypair() -> Tuple[bytes, bytes]:
    """Returns (private_key_raw_bytes, public_key_raw_bytes)."""
    private_key = Ed25519PrivateKey.generate()
    return private_key_bytes(private_key), public_key_bytes(private_key)


def private_key_from_bytes(raw_bytes: bytes) -> Ed25519PrivateKey:
    """Load Ed25519PrivateKey from raw 32-byte private key."""
    return Ed25519PrivateKey.from_private_bytes(raw_bytes)


def private_key_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())


def public_key_bytes(private_key: Ed25519PrivateKey) -> bytes:
    return private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


def ed25519_sign(priv_raw: bytes, data: bytes) -> bytes:
    return private_key_from_bytes(priv_raw).sign(data)


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()
