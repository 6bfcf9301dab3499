"""
Passkey constants and data types.

Ed25519 (COSE alg -8) is the primary algorithm so passkey identities line up
with the Ed25519-based Erynoa DID system; ES256 is accepted as a fallback.
"""

import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from utils.codec import base64url_decode, base64url_encode
from utils.errors import PasskeyErrorCode

# ============================================================================
# CONSTANTS
# ============================================================================

# COSE algorithm identifiers, https://www.iana.org/assignments/cose/cose.xhtml#algorithms
COSE_ED25519 = -8
COSE_ES256 = -7
COSE_RS256 = -257

COSE_ALGORITHM_NAMES = {
    COSE_ED25519: 'Ed25519',
    COSE_ES256: 'ES256',
    COSE_RS256: 'RS256',
}

SUPPORTED_PUB_KEY_PARAMS = [
    {'type': 'public-key', 'alg': COSE_ED25519},
    {'type': 'public-key', 'alg': COSE_ES256},
]

ED25519_ONLY_PUB_KEY_PARAMS = [
    {'type': 'public-key', 'alg': COSE_ED25519},
]

AUTHENTICATOR_SELECTION = {
    'residentKey': 'required',
    'userVerification': 'preferred',
}

ATTESTATION_PREFERENCE = 'direct'

CHALLENGE_LENGTH = 32
CHALLENGE_MAX_AGE_SECS = 300
USER_HANDLE_LENGTH = 16

NAMESPACES = (
    'self',
    'guild',
    'spirit',
    'thing',
    'vessel',
    'source',
    'craft',
    'vault',
    'pact',
    'circle',
)
DEFAULT_NAMESPACE = 'self'

STORAGE_KEY_CREDENTIALS = 'erynoa_passkey_credentials'
STORAGE_KEY_ACTIVE_DID = 'erynoa_passkey_did'
STORAGE_KEY_PUBLIC_KEYS = 'erynoa_passkey_pubkeys'
STORAGE_KEY_LAST_AUTH = 'erynoa_passkey_last_auth'


def algorithm_name(alg: int) -> str:
    return COSE_ALGORITHM_NAMES.get(alg, 'Unknown')


# ============================================================================
# IDENTITY
# ============================================================================

@dataclass
class PasskeyDID:
    did: str
    namespace: str
    unique_id: str
    public_key_hex: str
    public_key_bytes: bytes
    algorithm: int
    created_at: datetime


@dataclass
class ParsedDid:
    method: str
    identifier: str
    namespace: Optional[str] = None


_CREDENTIAL_FIELDS = (
    ('credential_id', 'id'),
    ('raw_id', 'rawId'),
    ('public_key', 'publicKey'),
    ('algorithm', 'algorithm'),
    ('did', 'did'),
    ('namespace', 'namespace'),
    ('created_at', 'createdAt'),
    ('last_used_at', 'lastUsedAt'),
    ('transports', 'transports'),
    ('display_name', 'displayName'),
    ('aaguid', 'aaguid'),
    ('is_primary', 'isPrimary'),
)


@dataclass
class StoredCredential:
    """A registered passkey as persisted by the credential ledger.

    public_key is base64url; timestamps are Unix milliseconds.
    """
    credential_id: str
    raw_id: str
    public_key: str
    algorithm: int
    did: str
    namespace: str
    created_at: int
    last_used_at: Optional[int] = None
    transports: Optional[List[str]] = None
    display_name: Optional[str] = None
    aaguid: Optional[str] = None
    is_primary: Optional[bool] = None

    @property
    def public_key_bytes(self) -> bytes:
        return base64url_decode(self.public_key)

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for attr, key in _CREDENTIAL_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                out[key] = list(value) if attr == 'transports' else value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredCredential":
        kwargs = {attr: data.get(key) for attr, key in _CREDENTIAL_FIELDS}
        if kwargs['raw_id'] is None:
            kwargs['raw_id'] = kwargs['credential_id']
        for required in ('credential_id', 'public_key', 'algorithm', 'did', 'namespace', 'created_at'):
            if kwargs[required] is None:
                raise ValueError(f"Stored credential missing '{required}'")
        return cls(**kwargs)

    def descriptor(self) -> Dict[str, Any]:
        """Allow-list entry for a get() ceremony."""
        entry = {'id': self.credential_id, 'type': 'public-key'}
        if self.transports:
            entry['transports'] = list(self.transports)
        return entry


# ============================================================================
# CHALLENGE
# ============================================================================

@dataclass
class Challenge:
    challenge: str
    challenge_id: Optional[str] = None
    expires_at: Optional[int] = None
    options: Dict[str, Any] = field(default_factory=dict)
    is_local: bool = False

    @property
    def challenge_bytes(self) -> bytes:
        return base64url_decode(self.challenge)

    @classmethod
    def generate_local(cls) -> "Challenge":
        """32 random bytes with a nominal 300s expiry; not enforced client-side."""
        return cls(
            challenge=base64url_encode(secrets.token_bytes(CHALLENGE_LENGTH)),
            expires_at=int(time.time()) + CHALLENGE_MAX_AGE_SECS,
            is_local=True,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Challenge":
        challenge = data.get('challenge')
        if not isinstance(challenge, str) or not challenge:
            raise ValueError("Challenge response without 'challenge'")
        return cls(
            challenge=challenge,
            challenge_id=data.get('challengeId') or data.get('challenge_id'),
            expires_at=data.get('expiresAt') or data.get('expires_at'),
            options=data.get('options') or {},
        )


# ============================================================================
# AUTHENTICATOR RESPONSES
# ============================================================================

@dataclass
class RegistrationResponse:
    """Outcome of a create() ceremony. Binary fields are base64url."""
    id: str
    raw_id: str
    client_data_json: str
    attestation_object: Optional[str] = None
    authenticator_data: Optional[str] = None
    public_key: Optional[str] = None
    public_key_algorithm: Optional[int] = None
    transports: List[str] = field(default_factory=list)
    type: str = 'public-key'


@dataclass
class AuthenticationResponse:
    """Outcome of a get() ceremony. Binary fields are base64url."""
    id: str
    raw_id: str
    client_data_json: str
    authenticator_data: str
    signature: str
    user_handle: Optional[str] = None
    type: str = 'public-key'


# ============================================================================
# CEREMONY OPTIONS
# ============================================================================

@dataclass
class RegistrationOptions:
    namespace: str = DEFAULT_NAMESPACE
    display_name: Optional[str] = None
    username: Optional[str] = None
    force_ed25519: bool = False
    prefer_platform_authenticator: bool = False
    set_primary: bool = False
    attestation: str = ATTESTATION_PREFERENCE
    timeout: Optional[int] = None
    register_with_backend: bool = False


@dataclass
class AuthenticationOptions:
    credential_id: Optional[str] = None
    did: Optional[str] = None
    require_user_verification: bool = False
    timeout: Optional[int] = None


@dataclass
class SignOptions:
    credential_id: Optional[str] = None
    did: Optional[str] = None
    challenge: Optional[bytes] = None
    require_user_verification: bool = False
    timeout: Optional[int] = None


# ============================================================================
# CEREMONY RESULTS
# ============================================================================

class CeremonyState(str, Enum):
    IDLE = 'idle'
    CHALLENGE_ACQUIRED = 'challenge_acquired'
    IN_PROGRESS = 'in_progress'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    TIMED_OUT = 'timed_out'


@dataclass
class CeremonyResult:
    success: bool
    error: Optional[str] = None
    error_code: Optional[PasskeyErrorCode] = None

    @classmethod
    def failure(cls, code: PasskeyErrorCode, message: str):
        return cls(success=False, error=message, error_code=code)


@dataclass
class RegistrationResult(CeremonyResult):
    did: Optional[PasskeyDID] = None
    credential: Optional[StoredCredential] = None
    response: Optional[RegistrationResponse] = None
    backend_registered: Optional[bool] = None


@dataclass
class AuthenticationResult(CeremonyResult):
    did: Optional[str] = None
    credential_id: Optional[str] = None
    signature: Optional[str] = None
    response: Optional[AuthenticationResponse] = None


@dataclass
class SignatureResult(CeremonyResult):
    signature_bytes: Optional[bytes] = None
    signature_hex: Optional[str] = None
    signature_base64: Optional[str] = None
    did: Optional[str] = None
    challenge: Optional[str] = None
    response: Optional[AuthenticationResponse] = None


# ============================================================================
# STATE
# ============================================================================

@dataclass(frozen=True)
class PasskeySupport:
    webauthn_available: bool = False
    platform_authenticator_available: bool = False
    conditional_ui_available: bool = False
    ed25519_supported: bool = False
    uvpa_available: bool = False


@dataclass(frozen=True)
class PasskeyState:
    """Immutable snapshot published by PasskeyStore."""
    support: Optional[PasskeySupport] = None
    credentials: Tuple[StoredCredential, ...] = ()
    active_did: Optional[str] = None
    active_credential: Optional[StoredCredential] = None
    initialized: bool = False
    loading: bool = False
    error: Optional[str] = None
    error_code: Optional[PasskeyErrorCode] = None
    ceremony_state: CeremonyState = CeremonyState.IDLE

    def evolve(self, **changes) -> "PasskeyState":
        return replace(self, **changes)
