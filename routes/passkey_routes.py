"""
Passkey API endpoints — development backend.

Endpoints:
    GET  /api/v1/auth/challenge          - Fresh ceremony challenge
    POST /api/v1/auth/passkey/register   - Store a registered passkey public key

Assertions are not verified here; the register endpoint only checks that the
DID, namespace and algorithm are consistent with the submitted public key.
"""

import uuid
from datetime import datetime, timezone
from functools import wraps

from flask import Blueprint, request, jsonify

from utils.logger import get_logger

logger = get_logger(__name__)

passkey_bp = Blueprint('passkey', __name__, url_prefix='/api/v1/auth')

REQUIRED_REGISTRATION_FIELDS = ('credentialId', 'publicKey', 'algorithm', 'did', 'namespace')


class InvalidRegistrationError(Exception):
    pass


class CredentialAlreadyRegisteredError(Exception):
    pass


def handle_errors(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except InvalidRegistrationError as e:
            return jsonify({"error": str(e)}), 400
        except CredentialAlreadyRegisteredError:
            return jsonify({"error": "Credential already registered"}), 409
        except Exception as e:
            logger.error(f"API error: {e}")
            return jsonify({"error": "Internal server error"}), 500
    return decorated


@passkey_bp.route('/challenge', methods=['GET'])
@handle_errors
def get_challenge():
    from utils.passkey_types import Challenge

    challenge = Challenge.generate_local()
    return jsonify({
        "challenge": challenge.challenge,
        "challengeId": uuid.uuid4().hex,
        "expiresAt": challenge.expires_at,
    })


def _validate_registration(data: dict) -> bytes:
    """Returns the decoded public key; raises InvalidRegistrationError."""
    from utils.codec import base64url_decode
    from utils.did_key import generate_namespaced_did, is_valid_did, parse_did
    from utils.errors import CodecError
    from utils.passkey_types import COSE_ED25519, COSE_ES256, NAMESPACES

    missing = [name for name in REQUIRED_REGISTRATION_FIELDS if data.get(name) in (None, '')]
    if missing:
        raise InvalidRegistrationError(f"Missing fields: {', '.join(missing)}")

    did = data['did']
    namespace = data['namespace']

    if namespace not in NAMESPACES:
        raise InvalidRegistrationError(f"Unknown namespace: {namespace}")
    if not isinstance(did, str) or not is_valid_did(did):
        raise InvalidRegistrationError("Invalid DID")
    if parse_did(did).namespace != namespace:
        raise InvalidRegistrationError("DID namespace does not match namespace")
    if data['algorithm'] not in (COSE_ED25519, COSE_ES256):
        raise InvalidRegistrationError(f"Unsupported algorithm: {data['algorithm']}")

    for name in ('credentialId', 'publicKey'):
        if not isinstance(data[name], str):
            raise InvalidRegistrationError(f"{name} must be a string")

    try:
        public_key = base64url_decode(data['publicKey'])
    except CodecError:
        raise InvalidRegistrationError("publicKey is not base64url")
    if not public_key:
        raise InvalidRegistrationError("publicKey is empty")

    if generate_namespaced_did(public_key, namespace) != did:
        raise InvalidRegistrationError("DID does not match public key")
    return public_key


@passkey_bp.route('/passkey/register', methods=['POST'])
@handle_errors
def register_passkey():
    from utils.codec import hex_encode
    from utils.database import find_passkey_credential, insert_passkey_credential

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRegistrationError("Expected a JSON object")

    public_key = _validate_registration(data)

    if find_passkey_credential(data['credentialId']) is not None:
        raise CredentialAlreadyRegisteredError()

    insert_passkey_credential({
        'credential_id': data['credentialId'],
        'public_key_hex': hex_encode(public_key),
        'algorithm': data['algorithm'],
        'did': data['did'],
        'namespace': data['namespace'],
        'display_name': data.get('displayName'),
        'transports': data.get('transports') or [],
        'sign_count': 0,
        'created_at': datetime.now(timezone.utc).isoformat(),
    })

    logger.info(f"Registered passkey {data['credentialId'][:16]}... for {data['did']}")
    return jsonify({"success": True, "did": data['did']})
