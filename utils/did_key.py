"""
DID generation for passkey identities.

Two addressing schemes:

    did:erynoa:<namespace>:<unique-id>
        unique-id = first 16 hex chars of the public key. Works for any
        algorithm; the namespace says what kind of entity the DID names.

    did:key:z<base58btc(0xed01 || ed25519_public_key)>
        W3C did:key. The DID Document is derived from the identifier itself,
        no HTTP request and no registry.

Everything here is pure: the same key and namespace always give the same DID.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from utils.codec import hex_encode, multibase_decode, multibase_encode
from utils.crypto import generate_ed25519_keypair, private_key_from_bytes, public_key_bytes
from utils.errors import CodecError, InvalidKeyLengthError
from utils.passkey_types import (
    COSE_ED25519, DEFAULT_NAMESPACE, NAMESPACES, ParsedDid, PasskeyDID
)

# Multicodec prefix for Ed25519 public key (0xed 0x01)
MULTICODEC_ED25519_PREFIX = b'\xed\x01'

UNIQUE_ID_LENGTH = 16


def _unique_id(public_key: bytes) -> str:
    return hex_encode(public_key)[:UNIQUE_ID_LENGTH]


def generate_namespaced_did(public_key: bytes, namespace: str = DEFAULT_NAMESPACE) -> str:
    """did:erynoa:<namespace>:<first 16 hex chars of the public key>"""
    return f"did:erynoa:{namespace}:{_unique_id(public_key)}"


def generate_key_did(public_key: bytes) -> str:
    """
    did:key from a raw Ed25519 public key.

    Raises:
        InvalidKeyLengthError: key is not exactly 32 bytes.
    """
    if len(public_key) != 32:
        raise InvalidKeyLengthError(
            f"Invalid Ed25519 public key length: {len(public_key)}, expected 32"
        )
    return f"did:key:{multibase_encode(MULTICODEC_ED25519_PREFIX + bytes(public_key))}"


def create_identity(
    public_key: bytes,
    namespace: str = DEFAULT_NAMESPACE,
    algorithm: int = COSE_ED25519,
) -> PasskeyDID:
    public_key = bytes(public_key)
    unique_id = _unique_id(public_key)
    return PasskeyDID(
        did=f"did:erynoa:{namespace}:{unique_id}",
        namespace=namespace,
        unique_id=unique_id,
        public_key_hex=hex_encode(public_key),
        public_key_bytes=public_key,
        algorithm=algorithm,
        created_at=datetime.now(timezone.utc),
    )


def parse_did(did: str) -> Optional[ParsedDid]:
    """Split a DID into method / namespace / identifier, or None."""
    parts = did.split(':')
    if len(parts) < 3 or parts[0] != 'did':
        return None

    method = parts[1]
    if method == 'erynoa' and len(parts) == 4:
        return ParsedDid(method=method, namespace=parts[2], identifier=parts[3])
    if method == 'key' and len(parts) == 3 and parts[2].startswith('z'):
        return ParsedDid(method=method, identifier=parts[2])
    return None


def is_valid_did(did: str) -> bool:
    parsed = parse_did(did)
    if parsed is None:
        return False
    if parsed.method == 'erynoa':
        return parsed.namespace in NAMESPACES
    if parsed.method == 'key':
        return parsed.identifier.startswith('z')
    return False


def format_did_short(did: str, max_length: int = 24) -> str:
    """Shortened DID for display, e.g. did:erynoa:self:aaaa...aaaa"""
    if len(did) <= max_length:
        return did

    parts = did.split(':')
    if len(parts) < 3:
        return f"{did[:max_length - 3]}..."

    method = parts[1]
    last = parts[-1]
    if method == 'erynoa' and len(parts) == 4:
        return f"did:erynoa:{parts[2]}:{last[:4]}...{last[-4:]}"
    if method == 'key':
        return f"did:key:{last[:8]}...{last[-4:]}"
    return f"{did[:max_length - 3]}..."


def generate_did_key() -> Tuple[str, bytes]:
    """
    Generate a new Ed25519 keypair and derive a DID:KEY.

    Returns:
        (did_string, private_key_raw_bytes)
    """
    priv_bytes, pub_bytes = generate_ed25519_keypair()
    return generate_key_did(pub_bytes), priv_bytes


def key_did_from_private_bytes(priv_bytes: bytes) -> str:
    """Derive DID:KEY string from raw Ed25519 private key bytes."""
    return generate_key_did(public_key_bytes(private_key_from_bytes(priv_bytes)))


def public_key_from_key_did(did: str) -> bytes:
    """
    Recover the raw Ed25519 public key embedded in a did:key.

    Raises:
        ValueError: not an Ed25519 did:key.
    """
    parsed = parse_did(did)
    if parsed is None or parsed.method != 'key':
        raise ValueError(f"Not a did:key: {did}")
    try:
        raw = multibase_decode(parsed.identifier)
    except CodecError as e:
        raise ValueError(f"Malformed did:key: {did}") from e
    if raw[:2] != MULTICODEC_ED25519_PREFIX or len(raw) != 34:
        raise ValueError(f"Not an Ed25519 did:key: {did}")
    return raw[2:]


DID_CONTEXT = (
    "https://www.w3.org/ns/did/v1",
    "https://w3id.org/security/suites/ed25519-2020/v1",
)


def resolve_did_key(did: str, also_known_as: Optional[List[str]] = None) -> dict:
    """
    DID Document for an Ed25519 did:key, derived offline from the identifier.

    also_known_as lists equivalent identifiers, e.g. the did:erynoa DID of
    the passkey that holds the key.

    Raises:
        ValueError: not a valid Ed25519 did:key.
    """
    public_key_from_key_did(did)
    fragment = parse_did(did).identifier
    method_id = f"{did}#{fragment}"

    document = {
        "@context": list(DID_CONTEXT),
        "id": did,
        "verificationMethod": [{
            "id": method_id,
            "type": "Ed25519VerificationKey2020",
            "controller": did,
            "publicKeyMultibase": fragment,
        }],
    }
    for relationship in ("authentication", "assertionMethod"):
        document[relationship] = [method_id]
    if also_known_as:
        document["alsoKnownAs"] = list(also_known_as)
    return document
