"""Tests for utils/authenticator.py and WebAuthn error mapping."""
import cbor2
import pytest

from utils.authenticator import SOFTWARE_AAGUID, SoftwareAuthenticator
from utils.codec import base64url_decode, base64url_encode
from utils.cose import parse_auth_data, parse_cose_key
from utils.errors import (
    PasskeyError, PasskeyErrorCode, WebAuthnError, is_webauthn_error,
    map_webauthn_error_to_code
)


def creation_options(**overrides):
    options = {
        'rp': {'name': 'Erynoa', 'id': 'erynoa.test'},
        'user': {'id': base64url_encode(b'\x01' * 16), 'name': 'u', 'displayName': 'U'},
        'challenge': base64url_encode(b'\x02' * 32),
        'pubKeyCredParams': [{'type': 'public-key', 'alg': -8}],
    }
    options.update(overrides)
    return options


class TestErrorMapping:
    @pytest.mark.parametrize('name,code', [
        ('AbortError', 'Timeout'),
        ('NotAllowedError', 'UserCancelled'),
        ('InvalidStateError', 'CredentialExists'),
        ('NotSupportedError', 'NotSupported'),
        ('SecurityError', 'VerificationFailed'),
        ('ConstraintError', 'UnsupportedAlgorithm'),
        ('UnknownError', 'Unknown'),
    ])
    def test_names(self, name, code):
        assert map_webauthn_error_to_code(WebAuthnError(name)) == code

    def test_non_webauthn(self):
        assert not is_webauthn_error(RuntimeError("x"))
        assert map_webauthn_error_to_code(RuntimeError("x")) == PasskeyErrorCode.UNKNOWN

    def test_unrecognised_name(self):
        assert not is_webauthn_error(WebAuthnError('WeirdError'))
        assert map_webauthn_error_to_code(WebAuthnError('WeirdError')) == PasskeyErrorCode.UNKNOWN

    def test_passkey_error_keeps_code(self):
        error = PasskeyError("gone", PasskeyErrorCode.CREDENTIAL_NOT_FOUND)
        assert map_webauthn_error_to_code(error) == PasskeyErrorCode.CREDENTIAL_NOT_FOUND


class TestSoftwareAuthenticator:
    def test_attestation_contains_auth_data(self):
        response = SoftwareAuthenticator().create(creation_options())
        attestation = cbor2.loads(base64url_decode(response.attestation_object))
        assert attestation['fmt'] == 'none'
        assert attestation['authData'] == base64url_decode(response.authenticator_data)

    def test_auth_data_carries_reported_key(self):
        response = SoftwareAuthenticator().create(creation_options())
        parsed = parse_auth_data(base64url_decode(response.authenticator_data))
        assert parsed.aaguid == str(SOFTWARE_AAGUID)
        assert base64url_encode(parsed.credential_id) == response.id
        assert parse_cose_key(parsed.credential_public_key).public_key == base64url_decode(response.public_key)

    def test_exclude_credentials(self):
        authenticator = SoftwareAuthenticator()
        first = authenticator.create(creation_options())
        with pytest.raises(WebAuthnError) as exc_info:
            authenticator.create(creation_options(excludeCredentials=[{'type': 'public-key', 'id': first.id}]))
        assert exc_info.value.name == 'InvalidStateError'

    def test_algorithm_preference_order(self):
        authenticator = SoftwareAuthenticator()
        response = authenticator.create(creation_options(pubKeyCredParams=[
            {'type': 'public-key', 'alg': -7}, {'type': 'public-key', 'alg': -8},
        ]))
        assert response.public_key_algorithm == -7

    def test_get_without_credentials(self):
        with pytest.raises(WebAuthnError) as exc_info:
            SoftwareAuthenticator().get({'rpId': 'erynoa.test', 'challenge': 'abc'})
        assert exc_info.value.name == 'NotAllowedError'

    def test_sign_count_increments(self):
        authenticator = SoftwareAuthenticator()
        authenticator.create(creation_options())
        request = {'rpId': 'erynoa.test', 'challenge': 'abc'}
        first = parse_auth_data(base64url_decode(authenticator.get(request).authenticator_data))
        second = parse_auth_data(base64url_decode(authenticator.get(request).authenticator_data))
        assert second.sign_count == first.sign_count + 1

    def test_fail_next_is_one_shot(self):
        authenticator = SoftwareAuthenticator()
        authenticator.fail_next('AbortError')
        with pytest.raises(WebAuthnError):
            authenticator.create(creation_options())
        assert authenticator.create(creation_options()).id
