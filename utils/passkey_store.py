"""
Observable passkey state for UI and long-running consumers.

PasskeyStore wraps a PasskeyService and publishes an immutable PasskeyState
snapshot after every change. Listeners receive the current snapshot as soon
as they subscribe.
"""

from typing import Callable, List, Optional, Union

from utils.errors import PasskeyError
from utils.logger import get_logger
from utils.passkey_service import PasskeyService
from utils.passkey_types import (
    COSE_ED25519,
    AuthenticationOptions,
    AuthenticationResult,
    CeremonyState,
    PasskeyState,
    RegistrationOptions,
    RegistrationResult,
    SignatureResult,
    SignOptions,
    StoredCredential,
)

logger = get_logger(__name__)

Listener = Callable[[PasskeyState], None]


class PasskeyStore:

    def __init__(self, service: PasskeyService):
        self.service = service
        self._state = PasskeyState()
        self._listeners: List[Listener] = []
        service.on_state_change = self._on_ceremony_state

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)
        self._deliver(listener, self._state)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def get_state(self) -> PasskeyState:
        return self._state

    def _deliver(self, listener: Listener, state: PasskeyState) -> None:
        try:
            listener(state)
        except Exception:
            logger.exception("Passkey state listener failed")

    def _set(self, **changes) -> None:
        self._state = self._state.evolve(**changes)
        for listener in list(self._listeners):
            self._deliver(listener, self._state)

    def _on_ceremony_state(self, ceremony_state: CeremonyState) -> None:
        self._set(ceremony_state=ceremony_state)

    def _ledger_snapshot(self) -> dict:
        ledger = self.service.ledger
        return {
            'credentials': tuple(ledger.list()),
            'active_did': ledger.get_active(),
            'active_credential': ledger.get_active_credential(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        if self._state.initialized:
            return
        self._set(loading=True)
        try:
            support = self.service.check_support()
            self._set(support=support, initialized=True, loading=False,
                      **self._ledger_snapshot())
        except PasskeyError as e:
            logger.error(f"Passkey init failed: {e}")
            self._set(initialized=True, loading=False, error=str(e), error_code=e.code)

    def refresh(self) -> None:
        self._set(**self._ledger_snapshot())

    def refresh_support(self) -> None:
        self._set(support=self.service.check_support(refresh=True))

    # ------------------------------------------------------------------
    # Ceremonies
    # ------------------------------------------------------------------

    def _finish(self, result) -> None:
        if result.success:
            self._set(loading=False, error=None, error_code=None, **self._ledger_snapshot())
        else:
            self._set(loading=False, error=result.error, error_code=result.error_code)

    def register(self, options: Optional[RegistrationOptions] = None) -> RegistrationResult:
        self._set(loading=True, error=None, error_code=None)
        result = self.service.register(options)
        self._finish(result)
        return result

    def authenticate(self, options: Optional[AuthenticationOptions] = None) -> AuthenticationResult:
        self._set(loading=True, error=None, error_code=None)
        result = self.service.authenticate(options)
        self._finish(result)
        return result

    def sign(self, message: Union[bytes, str], options: Optional[SignOptions] = None) -> SignatureResult:
        self._set(loading=True, error=None, error_code=None)
        result = self.service.sign(message, options)
        self._finish(result)
        return result

    # ------------------------------------------------------------------
    # Ledger management
    # ------------------------------------------------------------------

    def set_active_did(self, did: str) -> bool:
        try:
            self.service.ledger.set_active(did)
        except PasskeyError as e:
            self._set(error=str(e), error_code=e.code)
            return False
        self._set(**self._ledger_snapshot())
        return True

    def clear_active_did(self) -> None:
        self.service.ledger.clear_active()
        self._set(**self._ledger_snapshot())

    def delete_credential(self, credential_id: str) -> bool:
        deleted = self.service.ledger.delete(credential_id)
        if not deleted:
            logger.warning(f"delete_credential: unknown credential {credential_id[:16]}...")
        self._set(**self._ledger_snapshot())
        return deleted

    def rename_credential(self, credential_id: str, display_name: Optional[str]) -> bool:
        renamed = self.service.ledger.rename(credential_id, display_name) is not None
        self._set(**self._ledger_snapshot())
        return renamed

    def clear_all(self) -> None:
        self.service.ledger.clear_all()
        self._state = PasskeyState(support=self._state.support, initialized=True)
        self._set()

    def clear_error(self) -> None:
        self._set(error=None, error_code=None)

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    @property
    def is_available(self) -> bool:
        return bool(self._state.support and self._state.support.webauthn_available)

    @property
    def has_platform_authenticator(self) -> bool:
        return bool(self._state.support and self._state.support.platform_authenticator_available)

    @property
    def supports_ed25519(self) -> bool:
        return bool(self._state.support and self._state.support.ed25519_supported)

    @property
    def credential_count(self) -> int:
        return len(self._state.credentials)

    @property
    def has_registered(self) -> bool:
        return self.credential_count > 0

    @property
    def is_authenticated(self) -> bool:
        return self._state.active_did is not None

    @property
    def primary_credential(self) -> Optional[StoredCredential]:
        """Primary if flagged, else the active one, else the first Ed25519 one."""
        credentials = self._state.credentials
        primary = next((c for c in credentials if c.is_primary), None)
        if primary is not None:
            return primary
        if self._state.active_credential is not None:
            return self._state.active_credential
        return next((c for c in credentials if c.algorithm == COSE_ED25519),
                    credentials[0] if credentials else None)
