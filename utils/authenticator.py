"""
Platform authenticator adapters.

PlatformAuthenticator is the capability the ceremony service drives: a
create() / get() pair taking WebAuthn options dicts (the JSON shapes of
PublicKeyCredentialCreationOptions / PublicKeyCredentialRequestOptions) and
raising WebAuthnError with the WebAuthn error name on failure.

SoftwareAuthenticator keeps its keys in memory and answers immediately. It
produces real authenticator data (rpIdHash, flags, counter, attested
credential data with a CBOR COSE key) so the extraction and DID paths run
exactly as they do against hardware.
"""

import json
import os
import struct
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import cbor2
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from utils.codec import base64url_decode, base64url_encode
from utils.cose import FLAG_ATTESTED_CREDENTIAL_DATA, FLAG_USER_PRESENT, FLAG_USER_VERIFIED
from utils.crypto import ed25519_sign, generate_ed25519_keypair, sha256
from utils.errors import WebAuthnError
from utils.passkey_types import (
    COSE_ED25519, COSE_ES256, AuthenticationResponse, RegistrationResponse
)

SOFTWARE_AAGUID = uuid.UUID('8b1f6c1e-7a0e-4d2b-9a55-5e0e9f1c0d42')


class PlatformAuthenticator:
    name: str = "base"

    def is_available(self) -> bool:
        return False

    def is_user_verifying_platform_authenticator_available(self) -> bool:
        return False

    def is_conditional_mediation_available(self) -> bool:
        return False

    def supports_algorithm(self, alg: int) -> bool:
        return True

    def create(self, options: dict) -> RegistrationResponse:
        raise NotImplementedError

    def get(self, options: dict) -> AuthenticationResponse:
        raise NotImplementedError


@dataclass
class _SoftwareCredential:
    credential_id: bytes
    rp_id: str
    user_handle: bytes
    algorithm: int
    private_key: object
    sign_count: int = 0


class SoftwareAuthenticator(PlatformAuthenticator):
    """
    In-memory authenticator for development and tests.

    fail_next(name) makes the next ceremony raise WebAuthnError(name), which
    is how cancellation, timeouts and similar user-side outcomes are played.
    """
    name = "software"

    def __init__(
        self,
        origin: str = "http://localhost",
        algorithms: Sequence[int] = (COSE_ED25519, COSE_ES256),
        report_public_key: bool = True,
        platform: bool = True,
        transports: Sequence[str] = ("internal",),
    ):
        self.origin = origin
        self.algorithms = tuple(algorithms)
        self.report_public_key = report_public_key
        self.platform = platform
        self.transports = list(transports)
        self.credentials: Dict[bytes, _SoftwareCredential] = {}
        self.requests: List[dict] = []
        self._next_error: Optional[WebAuthnError] = None

    def fail_next(self, name: str, message: str = '') -> None:
        self._next_error = WebAuthnError(name, message or f"Simulated {name}")

    def _raise_pending(self) -> None:
        if self._next_error is not None:
            error, self._next_error = self._next_error, None
            raise error

    def is_available(self) -> bool:
        return True

    def is_user_verifying_platform_authenticator_available(self) -> bool:
        return self.platform

    def supports_algorithm(self, alg: int) -> bool:
        return alg in self.algorithms

    # ------------------------------------------------------------------

    def _client_data(self, ceremony: str, challenge: str) -> bytes:
        return json.dumps({
            "type": ceremony,
            "challenge": challenge,
            "origin": self.origin,
            "crossOrigin": False,
        }, separators=(',', ':')).encode('utf-8')

    @staticmethod
    def _new_key(alg: int):
        """Returns (private_key, raw_public_key, cose_key_bytes)."""
        if alg == COSE_ED25519:
            priv, pub = generate_ed25519_keypair()
            cose = cbor2.dumps({1: 1, 3: COSE_ED25519, -1: 6, -2: pub})
            return priv, pub, cose

        private_key = ec.generate_private_key(ec.SECP256R1())
        numbers = private_key.public_key().public_numbers()
        x = numbers.x.to_bytes(32, 'big')
        y = numbers.y.to_bytes(32, 'big')
        cose = cbor2.dumps({1: 2, 3: COSE_ES256, -1: 1, -2: x, -3: y})
        return private_key, b'\x04' + x + y, cose

    @staticmethod
    def _sign(cred: _SoftwareCredential, data: bytes) -> bytes:
        if cred.algorithm == COSE_ED25519:
            return ed25519_sign(cred.private_key, data)
        return cred.private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    def create(self, options: dict) -> RegistrationResponse:
        self.requests.append(options)
        self._raise_pending()

        rp_id = options['rp']['id']
        for excluded in options.get('excludeCredentials') or []:
            if any(base64url_encode(cid) == excluded['id'] for cid in self.credentials):
                raise WebAuthnError('InvalidStateError', "Credential already registered")

        alg = next(
            (p['alg'] for p in options.get('pubKeyCredParams', []) if p['alg'] in self.algorithms),
            None,
        )
        if alg is None:
            raise WebAuthnError('NotSupportedError', "No supported public key algorithm")

        private_key, public_key, cose_key = self._new_key(alg)
        credential_id = os.urandom(16)
        self.credentials[credential_id] = _SoftwareCredential(
            credential_id=credential_id,
            rp_id=rp_id,
            user_handle=base64url_decode(options['user']['id']),
            algorithm=alg,
            private_key=private_key,
        )

        flags = FLAG_USER_PRESENT | FLAG_USER_VERIFIED | FLAG_ATTESTED_CREDENTIAL_DATA
        auth_data = (
            sha256(rp_id.encode('utf-8'))
            + bytes([flags])
            + struct.pack('>I', 0)
            + SOFTWARE_AAGUID.bytes
            + struct.pack('>H', len(credential_id))
            + credential_id
            + cose_key
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        cred_id_b64 = base64url_encode(credential_id)

        return RegistrationResponse(
            id=cred_id_b64,
            raw_id=cred_id_b64,
            client_data_json=base64url_encode(self._client_data("webauthn.create", options['challenge'])),
            attestation_object=base64url_encode(attestation_object),
            authenticator_data=base64url_encode(auth_data),
            public_key=base64url_encode(public_key) if self.report_public_key else None,
            public_key_algorithm=alg,
            transports=list(self.transports),
        )

    def get(self, options: dict) -> AuthenticationResponse:
        self.requests.append(options)
        self._raise_pending()

        rp_id = options.get('rpId')
        allowed = options.get('allowCredentials') or []
        if allowed:
            wanted = {entry['id'] for entry in allowed}
            candidates = [c for c in self.credentials.values() if base64url_encode(c.credential_id) in wanted]
        else:
            candidates = [c for c in self.credentials.values() if c.rp_id == rp_id]

        if not candidates:
            raise WebAuthnError('NotAllowedError', "No matching credential on this authenticator")

        cred = candidates[0]
        cred.sign_count += 1
        flags = FLAG_USER_PRESENT | FLAG_USER_VERIFIED
        auth_data = sha256(cred.rp_id.encode('utf-8')) + bytes([flags]) + struct.pack('>I', cred.sign_count)
        client_data = self._client_data("webauthn.get", options['challenge'])
        signature = self._sign(cred, auth_data + sha256(client_data))
        cred_id_b64 = base64url_encode(cred.credential_id)

        return AuthenticationResponse(
            id=cred_id_b64,
            raw_id=cred_id_b64,
            client_data_json=base64url_encode(client_data),
            authenticator_data=base64url_encode(auth_data),
            signature=base64url_encode(signature),
            user_handle=base64url_encode(cred.user_handle),
        )
