"""
HTTP client for the passkey backend.

    GET  {base}/v1/auth/challenge          - fresh ceremony challenge
    POST {base}/v1/auth/passkey/register   - register public key (best-effort)
    POST {base}/v1/auth/passkey/verify     - verify an assertion (best-effort)

Register and verify never raise: failures are logged and reported as False,
and they never touch the local ledger.
"""

from typing import Optional

import requests

from config import config
from utils.errors import ChallengeFetchError
from utils.logger import get_logger
from utils.passkey_types import AuthenticationResponse, Challenge, StoredCredential

logger = get_logger(__name__)


class PasskeyBackend:

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.API_BASE_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT
        self.session = session or requests.Session()

    def fetch_challenge(self) -> Challenge:
        """
        Raises:
            ChallengeFetchError: non-2xx status, transport error or bad body.
        """
        try:
            response = self.session.get(
                f"{self.base_url}/v1/auth/challenge",
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                raise ChallengeFetchError(f"Challenge response is not a JSON object: {type(body).__name__}")
            return Challenge.from_dict(body)
        except requests.exceptions.RequestException as e:
            raise ChallengeFetchError(f"Challenge fetch failed: {e}") from e
        except ValueError as e:
            raise ChallengeFetchError(f"Malformed challenge response: {e}") from e

    def register_credential(self, credential: StoredCredential) -> bool:
        payload = {
            "credentialId": credential.credential_id,
            "publicKey": credential.public_key,
            "algorithm": credential.algorithm,
            "did": credential.did,
            "namespace": credential.namespace,
        }
        if credential.display_name:
            payload["displayName"] = credential.display_name
        if credential.transports:
            payload["transports"] = list(credential.transports)

        try:
            response = self.session.post(
                f"{self.base_url}/v1/auth/passkey/register",
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Backend registration error: {e}")
            return False

        if not response.ok:
            logger.warning(f"Backend registration failed: {response.status_code}")
            return False
        return True

    def verify_authentication(self, auth_response: AuthenticationResponse) -> bool:
        payload = {
            "credentialId": auth_response.id,
            "signature": auth_response.signature,
            "authenticatorData": auth_response.authenticator_data,
            "clientDataJSON": auth_response.client_data_json,
        }
        try:
            response = self.session.post(
                f"{self.base_url}/v1/auth/passkey/verify",
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Backend verification error: {e}")
            return False

        if not response.ok:
            logger.warning(f"Backend verification failed: {response.status_code}")
        return response.ok
