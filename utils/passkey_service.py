"""
Passkey ceremony service.

Drives the three WebAuthn ceremonies against an injected authenticator and
credential ledger:

    register()      create a passkey, derive its did:erynoa, persist it
    authenticate()  assert with a stored passkey, mark it active
    sign()          assert over SHA-256(message || timestamp) or a given
                    challenge, return the signature

Each ceremony moves IDLE -> CHALLENGE_ACQUIRED -> IN_PROGRESS and ends in
SUCCESS, FAILED, CANCELLED or TIMED_OUT. The authenticator call is the only
blocking step. Failures come back as result objects with an error_code;
no exception escapes these methods, unrecognised ones map to Unknown.
"""

import secrets
import time
from typing import Callable, List, Optional, Union

from config import config
from utils.authenticator import PlatformAuthenticator
from utils.backend import PasskeyBackend
from utils.codec import base64url_decode, base64url_encode, hex_encode
from utils.cose import extract_public_key_from_auth_data, parse_auth_data
from utils.crypto import sha256
from utils.did_key import create_identity, generate_key_did, resolve_did_key
from utils.errors import (
    ChallengeFetchError, KeyExtractionError, PasskeyError, PasskeyErrorCode,
    WebAuthnError, map_webauthn_error_to_code
)
from utils.ledger import CredentialLedger
from utils.logger import get_logger
from utils.passkey_types import (
    AUTHENTICATOR_SELECTION,
    COSE_ED25519,
    ED25519_ONLY_PUB_KEY_PARAMS,
    NAMESPACES,
    SUPPORTED_PUB_KEY_PARAMS,
    USER_HANDLE_LENGTH,
    AuthenticationOptions,
    AuthenticationResponse,
    AuthenticationResult,
    CeremonyState,
    Challenge,
    PasskeySupport,
    RegistrationOptions,
    RegistrationResponse,
    RegistrationResult,
    SignatureResult,
    SignOptions,
    StoredCredential,
    algorithm_name,
)

logger = get_logger(__name__)


def _short_id(credential_id: str) -> str:
    return credential_id[:16] + '...'


class PasskeyService:

    def __init__(
        self,
        ledger: CredentialLedger,
        authenticator: Optional[PlatformAuthenticator],
        backend: Optional[PasskeyBackend] = None,
        rp_id: Optional[str] = None,
        rp_name: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.ledger = ledger
        self.authenticator = authenticator
        self.backend = backend
        self.rp_id = rp_id or config.RP_ID
        self.rp_name = rp_name or config.RP_NAME
        self.timeout_ms = timeout_ms or config.CEREMONY_TIMEOUT_MS
        self.state = CeremonyState.IDLE
        self.on_state_change: Optional[Callable[[CeremonyState], None]] = None
        self._support: Optional[PasskeySupport] = None

    @classmethod
    def from_config(cls, authenticator: PlatformAuthenticator,
                    profile_dir: Optional[str] = None) -> "PasskeyService":
        """Service over the profile's JSON ledger and the configured backend."""
        ledger = CredentialLedger.for_profile(profile_dir or config.PROFILE_DIR)
        return cls(ledger, authenticator, backend=PasskeyBackend())

    def _transition(self, state: CeremonyState) -> None:
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    # ------------------------------------------------------------------
    # Feature detection
    # ------------------------------------------------------------------

    def check_support(self, refresh: bool = False) -> PasskeySupport:
        """Probe the authenticator once per service; refresh=True re-probes."""
        if self._support is not None and not refresh:
            return self._support

        authenticator = self.authenticator
        if authenticator is None or not authenticator.is_available():
            self._support = PasskeySupport()
            return self._support

        platform = conditional = ed25519 = False
        try:
            platform = authenticator.is_user_verifying_platform_authenticator_available()
            conditional = authenticator.is_conditional_mediation_available()
            ed25519 = authenticator.supports_algorithm(COSE_ED25519)
        except WebAuthnError as e:
            logger.warning(f"Feature detection error: {e}")

        self._support = PasskeySupport(
            webauthn_available=True,
            platform_authenticator_available=platform,
            conditional_ui_available=conditional,
            ed25519_supported=ed25519,
            uvpa_available=platform,
        )
        return self._support

    def is_available(self) -> bool:
        return self.check_support().webauthn_available

    # ------------------------------------------------------------------
    # Challenges
    # ------------------------------------------------------------------

    @staticmethod
    def generate_local_challenge() -> Challenge:
        return Challenge.generate_local()

    def acquire_challenge(self) -> Challenge:
        """Backend challenge, or a local one when the backend is unreachable."""
        if self.backend is not None:
            try:
                return self.backend.fetch_challenge()
            except ChallengeFetchError as e:
                logger.warning(f"Using local challenge (backend unavailable): {e}")
            except Exception as e:
                logger.warning(f"Using local challenge (challenge service error: {e!r})")
        else:
            logger.warning("Using local challenge (no backend configured)")
        return Challenge.generate_local()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fail(self, result_cls, error: Exception, ceremony: str):
        code = map_webauthn_error_to_code(error)
        if code == PasskeyErrorCode.TIMEOUT:
            self._transition(CeremonyState.TIMED_OUT)
        elif code == PasskeyErrorCode.USER_CANCELLED:
            self._transition(CeremonyState.CANCELLED)
        else:
            self._transition(CeremonyState.FAILED)

        message = str(error) or f"Unknown error during passkey {ceremony}"
        if code in (PasskeyErrorCode.USER_CANCELLED, PasskeyErrorCode.TIMEOUT):
            logger.warning(f"Passkey {ceremony} ended: {code.value}: {message}")
        else:
            logger.error(f"Passkey {ceremony} error: {code.value}: {message}")
        return result_cls.failure(code, message)

    def _allow_credentials(self, credential_id: Optional[str], did: Optional[str],
                           include_all: bool) -> List[dict]:
        """
        Allow-list in priority order: explicit credential id, the credential
        for an explicit DID, every stored credential (include_all), else empty.

        An explicit id or DID with no stored credential gives an empty list, so
        the authenticator may offer any discoverable credential for the RP.
        """
        if credential_id or did:
            if credential_id:
                cred = self.ledger.get(credential_id)
            else:
                cred = self.ledger.get_credential_for(did)
            if cred is None:
                logger.warning(f"No stored credential for {credential_id or did}; "
                               f"allowing any discoverable credential")
                return []
            return [cred.descriptor()]

        if include_all:
            return [c.descriptor() for c in self.ledger.list()]
        return []

    def _request_options(self, challenge: str, allow: List[dict], require_uv: bool,
                         timeout: Optional[int]) -> dict:
        options = {
            'challenge': challenge,
            'rpId': self.rp_id,
            'timeout': timeout or self.timeout_ms,
            'userVerification': 'required' if require_uv else 'preferred',
        }
        if allow:
            options['allowCredentials'] = allow
        return options

    def _creation_options(self, challenge: Challenge, options: RegistrationOptions) -> dict:
        user_id = secrets.token_bytes(USER_HANDLE_LENGTH)
        pub_key_params = ED25519_ONLY_PUB_KEY_PARAMS if options.force_ed25519 else SUPPORTED_PUB_KEY_PARAMS

        selection = dict(AUTHENTICATOR_SELECTION)
        if options.prefer_platform_authenticator:
            selection['authenticatorAttachment'] = 'platform'

        creation = {
            'rp': {'name': self.rp_name, 'id': self.rp_id},
            'user': {
                'id': base64url_encode(user_id),
                'name': options.username or f"erynoa-user-{int(time.time() * 1000)}",
                'displayName': options.display_name or 'Erynoa User',
            },
            'challenge': challenge.challenge,
            'pubKeyCredParams': [dict(p) for p in pub_key_params],
            'authenticatorSelection': selection,
            'attestation': options.attestation or 'direct',
            'timeout': options.timeout or self.timeout_ms,
        }
        # Server-provided options win
        creation.update(challenge.options or {})
        return creation

    @staticmethod
    def _registration_public_key(response: RegistrationResponse) -> bytes:
        if response.public_key:
            return base64url_decode(response.public_key)
        if response.authenticator_data:
            logger.warning("No publicKey in registration response, extracting from authenticator data")
            return extract_public_key_from_auth_data(base64url_decode(response.authenticator_data))
        raise PasskeyError("Could not extract public key from registration response")

    @staticmethod
    def _aaguid(response: RegistrationResponse) -> Optional[str]:
        if not response.authenticator_data:
            return None
        try:
            return parse_auth_data(base64url_decode(response.authenticator_data)).aaguid
        except (KeyExtractionError, ValueError):
            return None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, options: Optional[RegistrationOptions] = None) -> RegistrationResult:
        """Create a passkey and a did:erynoa identity bound to it."""
        options = options or RegistrationOptions()
        self._transition(CeremonyState.IDLE)

        try:
            if options.namespace not in NAMESPACES:
                raise PasskeyError(f"Unknown DID namespace: {options.namespace}")

            if not self.check_support().webauthn_available:
                raise PasskeyError("WebAuthn is not supported on this platform",
                                   PasskeyErrorCode.NOT_SUPPORTED)

            challenge = self.acquire_challenge()
            self._transition(CeremonyState.CHALLENGE_ACQUIRED)

            creation = self._creation_options(challenge, options)
            logger.info(f"Starting registration: rpId={self.rp_id} "
                        f"algorithms={[p['alg'] for p in creation['pubKeyCredParams']]}")

            self._transition(CeremonyState.IN_PROGRESS)
            response = self.authenticator.create(creation)

            public_key = self._registration_public_key(response)
            algorithm = response.public_key_algorithm or COSE_ED25519
            if algorithm != COSE_ED25519:
                logger.warning(
                    f"Authenticator used algorithm {algorithm} ({algorithm_name(algorithm)}) "
                    f"instead of Ed25519 (-8). DID compatibility may be limited."
                )

            identity = create_identity(public_key, options.namespace, algorithm)
            credential = StoredCredential(
                credential_id=response.id,
                raw_id=response.raw_id,
                public_key=base64url_encode(public_key),
                algorithm=algorithm,
                did=identity.did,
                namespace=options.namespace,
                created_at=int(time.time() * 1000),
                transports=list(response.transports) or None,
                display_name=options.display_name,
                aaguid=self._aaguid(response),
                is_primary=True if options.set_primary else None,
            )
            self.ledger.save(credential, activate=options.set_primary)
        except Exception as e:
            return self._fail(RegistrationResult, e, 'registration')

        self._transition(CeremonyState.SUCCESS)
        logger.info(f"Registration successful: did={identity.did} "
                    f"algorithm={algorithm} credentialId={_short_id(response.id)}")

        backend_registered = None
        if options.register_with_backend:
            backend_registered = self.register_with_backend(credential)

        return RegistrationResult(
            success=True,
            did=identity,
            credential=credential,
            response=response,
            backend_registered=backend_registered,
        )

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, options: Optional[AuthenticationOptions] = None) -> AuthenticationResult:
        options = options or AuthenticationOptions()
        self._transition(CeremonyState.IDLE)

        try:
            if not self.check_support().webauthn_available:
                raise PasskeyError("WebAuthn is not supported on this platform",
                                   PasskeyErrorCode.NOT_SUPPORTED)

            challenge = self.acquire_challenge()
            self._transition(CeremonyState.CHALLENGE_ACQUIRED)

            allow = self._allow_credentials(options.credential_id, options.did, include_all=True)
            request = self._request_options(challenge.challenge, allow,
                                            options.require_user_verification, options.timeout)

            logger.info("Starting authentication")
            self._transition(CeremonyState.IN_PROGRESS)
            response = self.authenticator.get(request)

            credential = self.ledger.touch(response.id, activate=True)
        except Exception as e:
            return self._fail(AuthenticationResult, e, 'authentication')

        if credential is None:
            logger.warning(f"Authenticated with credential {_short_id(response.id)} "
                           f"that is not stored on this device")

        self._transition(CeremonyState.SUCCESS)
        logger.info(f"Authentication successful: credentialId={_short_id(response.id)} "
                    f"did={credential.did if credential else None}")

        return AuthenticationResult(
            success=True,
            did=credential.did if credential else None,
            credential_id=response.id,
            signature=response.signature,
            response=response,
        )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign(self, message: Union[bytes, str], options: Optional[SignOptions] = None) -> SignatureResult:
        """
        Sign `message` through an assertion ceremony.

        Without an explicit challenge the ceremony signs
        SHA-256(message || current time in ms), tying the signature to both
        the payload and the moment it was made.
        """
        options = options or SignOptions()
        self._transition(CeremonyState.IDLE)

        try:
            if not self.check_support().webauthn_available:
                raise PasskeyError("WebAuthn is not supported on this platform",
                                   PasskeyErrorCode.NOT_SUPPORTED)

            message_bytes = message.encode('utf-8') if isinstance(message, str) else bytes(message)
            if options.challenge is not None:
                challenge = base64url_encode(options.challenge)
            else:
                timestamp = str(int(time.time() * 1000)).encode('utf-8')
                challenge = base64url_encode(sha256(message_bytes + timestamp))
            self._transition(CeremonyState.CHALLENGE_ACQUIRED)

            allow = self._allow_credentials(options.credential_id, options.did, include_all=False)
            request = self._request_options(challenge, allow,
                                            options.require_user_verification, options.timeout)

            self._transition(CeremonyState.IN_PROGRESS)
            response = self.authenticator.get(request)

            signature_bytes = base64url_decode(response.signature)
            credential = self.ledger.get(response.id)
        except Exception as e:
            return self._fail(SignatureResult, e, 'signing')

        self._transition(CeremonyState.SUCCESS)
        return SignatureResult(
            success=True,
            signature_bytes=signature_bytes,
            signature_hex=hex_encode(signature_bytes),
            signature_base64=response.signature,
            did=credential.did if credential else None,
            challenge=challenge,
            response=response,
        )

    # ------------------------------------------------------------------
    # DID documents
    # ------------------------------------------------------------------

    def resolve_did_document(self, did: str) -> Optional[dict]:
        """
        did:key document for the Ed25519 passkey behind `did`, listing the
        did:erynoa DID under alsoKnownAs. None for unknown DIDs and for
        non-Ed25519 credentials, which have no did:key form.
        """
        credential = self.ledger.get_credential_for(did)
        if credential is None or credential.algorithm != COSE_ED25519:
            return None
        key_did = generate_key_did(credential.public_key_bytes)
        return resolve_did_key(key_did, also_known_as=[credential.did])

    # ------------------------------------------------------------------
    # Remote registration / verification (best-effort)
    # ------------------------------------------------------------------

    def register_with_backend(self, credential: StoredCredential) -> bool:
        if self.backend is None:
            logger.warning("No backend configured; skipping remote registration")
            return False
        return self.backend.register_credential(credential)

    def verify_with_backend(self, response: AuthenticationResponse) -> bool:
        if self.backend is None:
            logger.warning("No backend configured; skipping remote verification")
            return False
        return self.backend.verify_authentication(response)
