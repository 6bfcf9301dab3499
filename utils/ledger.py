"""
Credential ledger — registered passkeys plus the "active DID" pointer.

Persisted through a string key-value store under four fixed keys:

    erynoa_passkey_credentials   JSON list of StoredCredential dicts
    erynoa_passkey_did           active DID (plain string)
    erynoa_passkey_pubkeys       public key backup {credentialId: {...}}
    erynoa_passkey_last_auth     last successful authentication marker

Every public method is one read-modify-write under the ledger lock, and
multi-key changes go to the store in a single update() call.
"""

import json
import os
import tempfile
import threading
import time
from typing import Dict, List, Optional

from utils.errors import PasskeyError, PasskeyErrorCode
from utils.logger import get_logger
from utils.passkey_types import (
    STORAGE_KEY_ACTIVE_DID,
    STORAGE_KEY_CREDENTIALS,
    STORAGE_KEY_LAST_AUTH,
    STORAGE_KEY_PUBLIC_KEYS,
    StoredCredential,
)

logger = get_logger(__name__)

ALL_STORAGE_KEYS = (
    STORAGE_KEY_CREDENTIALS,
    STORAGE_KEY_ACTIVE_DID,
    STORAGE_KEY_PUBLIC_KEYS,
    STORAGE_KEY_LAST_AUTH,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


class MemoryStore:
    """Process-local key-value store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def update(self, values: Dict[str, Optional[str]]) -> None:
        """Set every key in `values`; a None value removes the key."""
        for key, value in values.items():
            if value is None:
                self.data.pop(key, None)
            else:
                self.data[key] = value


class JsonFileStore:
    """
    Key-value store kept in one JSON object file per profile.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so readers see the old or the new file, never half.
    """

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except ValueError:
            logger.warning(f"Profile store {self.path} is not valid JSON; treating as empty")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Profile store {self.path} is not a JSON object; treating as empty")
            return {}
        return data

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def update(self, values: Dict[str, Optional[str]]) -> None:
        data = self._read()
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value

        dir_path = os.path.dirname(self.path) or "."
        os.makedirs(dir_path, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=dir_path, prefix='.passkeys-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, separators=(',', ':'))
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class CredentialLedger:

    def __init__(self, store=None):
        self.store = store if store is not None else MemoryStore()
        self._lock = threading.RLock()

    @classmethod
    def for_profile(cls, profile_dir: str) -> "CredentialLedger":
        return cls(JsonFileStore(os.path.join(profile_dir, 'passkeys.json')))

    # ------------------------------------------------------------------
    # Low-level persistence
    # ------------------------------------------------------------------

    def _load(self) -> List[StoredCredential]:
        try:
            raw = self.store.get(STORAGE_KEY_CREDENTIALS)
        except OSError as e:
            logger.warning(f"Could not read stored credentials: {e}")
            return []
        if not raw:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("credential list is not a JSON array")
            return [StoredCredential.from_dict(item) for item in items]
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Stored credentials are corrupt, ignoring them: {e}")
            return []

    def _load_public_keys(self) -> Dict[str, dict]:
        try:
            data = json.loads(self.store.get(STORAGE_KEY_PUBLIC_KEYS) or '{}')
        except (ValueError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _commit(self, values: Dict[str, Optional[str]]) -> None:
        try:
            self.store.update(values)
        except OSError as e:
            logger.error(f"Failed to persist passkey ledger: {e}")
            raise PasskeyError(f"Failed to persist credentials: {e}", PasskeyErrorCode.STORAGE_ERROR) from e

    @staticmethod
    def _dump(credentials: List[StoredCredential]) -> str:
        return json.dumps([c.to_dict() for c in credentials], separators=(',', ':'))

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def list(self) -> List[StoredCredential]:
        with self._lock:
            return self._load()

    def get(self, credential_id: str) -> Optional[StoredCredential]:
        with self._lock:
            return next((c for c in self._load() if c.credential_id == credential_id), None)

    def get_credential_for(self, did: str) -> Optional[StoredCredential]:
        with self._lock:
            return next((c for c in self._load() if c.did == did), None)

    def get_primary(self) -> Optional[StoredCredential]:
        with self._lock:
            return next((c for c in self._load() if c.is_primary), None)

    def save(self, credential: StoredCredential, activate: bool = False) -> None:
        """Insert or replace by credential_id; optionally make it active."""
        with self._lock:
            credentials = self._load()
            for i, existing in enumerate(credentials):
                if existing.credential_id == credential.credential_id:
                    credentials[i] = credential
                    break
            else:
                credentials.append(credential)

            # At most one primary
            if credential.is_primary:
                for other in credentials:
                    if other is not credential and other.is_primary:
                        other.is_primary = None

            public_keys = self._load_public_keys()
            public_keys[credential.credential_id] = {
                'did': credential.did,
                'publicKey': credential.public_key,
                'algorithm': credential.algorithm,
            }

            values = {
                STORAGE_KEY_CREDENTIALS: self._dump(credentials),
                STORAGE_KEY_PUBLIC_KEYS: json.dumps(public_keys, separators=(',', ':')),
            }
            if activate:
                values[STORAGE_KEY_ACTIVE_DID] = credential.did
            self._commit(values)

    def delete(self, credential_id: str) -> bool:
        """
        Remove a credential. Clears the active pointer if it named the deleted
        credential's DID. Returns False when nothing matched.
        """
        with self._lock:
            credentials = self._load()
            target = next((c for c in credentials if c.credential_id == credential_id), None)
            if target is None:
                return False

            remaining = [c for c in credentials if c.credential_id != credential_id]
            public_keys = self._load_public_keys()
            public_keys.pop(credential_id, None)

            values = {
                STORAGE_KEY_CREDENTIALS: self._dump(remaining),
                STORAGE_KEY_PUBLIC_KEYS: json.dumps(public_keys, separators=(',', ':')),
            }
            active = self.store.get(STORAGE_KEY_ACTIVE_DID)
            if active is not None and active == target.did:
                values[STORAGE_KEY_ACTIVE_DID] = None
            self._commit(values)
            return True

    def clear_all(self) -> None:
        with self._lock:
            self._commit({key: None for key in ALL_STORAGE_KEYS})

    def touch(self, credential_id: str, used_at: Optional[int] = None,
              activate: bool = False) -> Optional[StoredCredential]:
        """Stamp last_used_at and the last-auth marker; optionally activate."""
        with self._lock:
            credentials = self._load()
            target = next((c for c in credentials if c.credential_id == credential_id), None)
            if target is None:
                return None

            target.last_used_at = used_at if used_at is not None else _now_ms()
            values = {
                STORAGE_KEY_CREDENTIALS: self._dump(credentials),
                STORAGE_KEY_LAST_AUTH: json.dumps({
                    'credentialId': target.credential_id,
                    'did': target.did,
                    'at': target.last_used_at,
                }, separators=(',', ':')),
            }
            if activate:
                values[STORAGE_KEY_ACTIVE_DID] = target.did
            self._commit(values)
            return target

    def rename(self, credential_id: str, display_name: Optional[str]) -> Optional[StoredCredential]:
        with self._lock:
            credentials = self._load()
            target = next((c for c in credentials if c.credential_id == credential_id), None)
            if target is None:
                return None
            target.display_name = display_name
            self._commit({STORAGE_KEY_CREDENTIALS: self._dump(credentials)})
            return target

    def get_public_key_backup(self) -> Dict[str, dict]:
        with self._lock:
            return self._load_public_keys()

    def get_last_auth(self) -> Optional[dict]:
        with self._lock:
            try:
                data = json.loads(self.store.get(STORAGE_KEY_LAST_AUTH) or 'null')
            except (ValueError, OSError):
                return None
            return data if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Active identity pointer
    # ------------------------------------------------------------------

    def set_active(self, did: str) -> None:
        with self._lock:
            if not any(c.did == did for c in self._load()):
                raise PasskeyError(f"No credential for {did}", PasskeyErrorCode.CREDENTIAL_NOT_FOUND)
            self._commit({STORAGE_KEY_ACTIVE_DID: did})

    def get_active(self) -> Optional[str]:
        """Active DID, or None. A pointer naming no stored credential is cleared."""
        with self._lock:
            try:
                did = self.store.get(STORAGE_KEY_ACTIVE_DID)
            except OSError as e:
                logger.warning(f"Could not read active DID: {e}")
                return None
            if not did:
                return None
            if not any(c.did == did for c in self._load()):
                logger.warning(f"Active DID {did} has no stored credential; clearing it")
                self._commit({STORAGE_KEY_ACTIVE_DID: None})
                return None
            return did

    def clear_active(self) -> None:
        with self._lock:
            self._commit({STORAGE_KEY_ACTIVE_DID: None})

    def get_active_credential(self) -> Optional[StoredCredential]:
        with self._lock:
            did = self.get_active()
            if did is None:
                return None
            return self.get_credential_for(did)
