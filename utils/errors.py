"""
Error types for the passkey identity core.

Pure helpers (codec, COSE extraction, DID generation) raise the ValueError
subclasses below. The ceremony layer catches everything and reports a
PasskeyErrorCode instead; WebAuthnError is what an authenticator adapter
raises, carrying the WebAuthn DOMException name ("AbortError",
"NotAllowedError", ...).
"""

from enum import Enum


class PasskeyErrorCode(str, Enum):
    NOT_SUPPORTED = 'NotSupported'
    USER_CANCELLED = 'UserCancelled'
    CREDENTIAL_EXISTS = 'CredentialExists'
    CREDENTIAL_NOT_FOUND = 'CredentialNotFound'
    INVALID_CHALLENGE = 'InvalidChallenge'
    CHALLENGE_FETCH_FAILED = 'ChallengeFetchFailed'
    VERIFICATION_FAILED = 'VerificationFailed'
    AUTHENTICATOR_NOT_AVAILABLE = 'AuthenticatorNotAvailable'
    TIMEOUT = 'Timeout'
    UNSUPPORTED_ALGORITHM = 'UnsupportedAlgorithm'
    ED25519_NOT_SUPPORTED = 'Ed25519NotSupported'
    NETWORK_ERROR = 'NetworkError'
    STORAGE_ERROR = 'StorageError'
    UNKNOWN = 'Unknown'


class CodecError(ValueError):
    pass


class OddLengthHexError(CodecError):
    pass


class InvalidBase58CharacterError(CodecError):
    def __init__(self, char: str):
        super().__init__(f"Invalid Base58 character: {char!r}")
        self.char = char


class KeyExtractionError(ValueError):
    pass


class AuthDataTooShortError(KeyExtractionError):
    pass


class CoseExtractionError(KeyExtractionError):
    pass


class InvalidKeyLengthError(ValueError):
    pass


class PasskeyError(Exception):
    """Domain failure carrying a PasskeyErrorCode."""

    def __init__(self, message: str, code: PasskeyErrorCode = PasskeyErrorCode.UNKNOWN):
        super().__init__(message)
        self.code = code


class ChallengeFetchError(PasskeyError):
    def __init__(self, message: str):
        super().__init__(message, PasskeyErrorCode.CHALLENGE_FETCH_FAILED)


WEBAUTHN_ERROR_NAMES = (
    'AbortError',
    'ConstraintError',
    'InvalidStateError',
    'NotAllowedError',
    'NotSupportedError',
    'SecurityError',
    'TypeError',
    'UnknownError',
)


class WebAuthnError(Exception):
    """Raised by authenticator adapters; `name` is the WebAuthn error name."""

    def __init__(self, name: str, message: str = ''):
        super().__init__(message or name)
        self.name = name


_WEBAUTHN_CODE_MAP = {
    'AbortError': PasskeyErrorCode.TIMEOUT,
    'NotAllowedError': PasskeyErrorCode.USER_CANCELLED,
    'InvalidStateError': PasskeyErrorCode.CREDENTIAL_EXISTS,
    'NotSupportedError': PasskeyErrorCode.NOT_SUPPORTED,
    'SecurityError': PasskeyErrorCode.VERIFICATION_FAILED,
    'ConstraintError': PasskeyErrorCode.UNSUPPORTED_ALGORITHM,
}


def is_webauthn_error(error: BaseException) -> bool:
    return isinstance(error, WebAuthnError) and error.name in WEBAUTHN_ERROR_NAMES


def map_webauthn_error_to_code(error: BaseException) -> PasskeyErrorCode:
    """Map a ceremony exception to a PasskeyErrorCode by its symbolic name."""
    if isinstance(error, PasskeyError):
        return error.code
    if not is_webauthn_error(error):
        return PasskeyErrorCode.UNKNOWN
    return _WEBAUTHN_CODE_MAP.get(error.name, PasskeyErrorCode.UNKNOWN)
