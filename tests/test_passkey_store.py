"""Tests for utils/passkey_store.py — observable passkey state."""
import pytest

from utils.authenticator import SoftwareAuthenticator
from utils.errors import PasskeyErrorCode
from utils.ledger import CredentialLedger, MemoryStore
from utils.passkey_service import PasskeyService
from utils.passkey_store import PasskeyStore
from utils.passkey_types import CeremonyState, RegistrationOptions


@pytest.fixture
def authenticator():
    return SoftwareAuthenticator()


@pytest.fixture
def store(authenticator):
    service = PasskeyService(CredentialLedger(MemoryStore()), authenticator, rp_id='erynoa.test')
    store = PasskeyStore(service)
    store.init()
    return store


class TestSubscribe:
    def test_immediate_delivery(self, store):
        seen = []
        store.subscribe(seen.append)
        assert seen == [store.get_state()]

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        store.clear_error()
        assert len(seen) == 1

    def test_unsubscribe_twice_is_harmless(self, store):
        unsubscribe = store.subscribe(lambda state: None)
        unsubscribe()
        unsubscribe()

    def test_failing_listener_skipped(self, store):
        seen = []

        def broken(state):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.clear_error()
        assert len(seen) == 2

    def test_snapshots_are_immutable(self, store):
        before = store.get_state()
        store.register()
        assert before.credentials == ()
        assert len(store.get_state().credentials) == 1


class TestInit:
    def test_support_loaded(self, store):
        state = store.get_state()
        assert state.initialized
        assert not state.loading
        assert store.is_available
        assert store.has_platform_authenticator
        assert store.supports_ed25519

    def test_init_once(self, store, authenticator):
        authenticator.algorithms = ()
        store.init()
        assert store.supports_ed25519

    def test_refresh_support(self, store, authenticator):
        authenticator.algorithms = ()
        store.refresh_support()
        assert not store.supports_ed25519


class TestCeremonies:
    def test_register(self, store):
        result = store.register(RegistrationOptions(set_primary=True))
        state = store.get_state()
        assert result.success
        assert store.credential_count == 1
        assert store.has_registered
        assert store.is_authenticated
        assert state.active_did == result.credential.did
        assert store.primary_credential == result.credential
        assert state.ceremony_state == CeremonyState.SUCCESS

    def test_ceremony_states_published(self, store):
        seen = []
        store.subscribe(lambda state: seen.append(state.ceremony_state))
        store.register()
        assert CeremonyState.IN_PROGRESS in seen
        assert seen[-1] == CeremonyState.SUCCESS

    def test_failure_sets_error(self, store, authenticator):
        authenticator.fail_next('NotAllowedError')
        result = store.register()
        state = store.get_state()
        assert not result.success
        assert state.error_code == PasskeyErrorCode.USER_CANCELLED
        assert state.error
        assert not state.loading
        assert state.ceremony_state == CeremonyState.CANCELLED

        store.clear_error()
        assert store.get_state().error is None
        assert store.get_state().error_code is None

    def test_authenticate_sets_active(self, store):
        registered = store.register().credential
        assert not store.is_authenticated
        result = store.authenticate()
        assert result.success
        assert store.get_state().active_did == registered.did
        assert store.get_state().active_credential.credential_id == registered.credential_id

    def test_sign(self, store):
        store.register()
        result = store.sign('hello')
        assert result.success
        assert store.get_state().error is None


class TestManagement:
    def test_set_and_clear_active(self, store):
        first = store.register().credential
        assert store.set_active_did(first.did) is True
        assert store.get_state().active_did == first.did
        store.clear_active_did()
        assert store.get_state().active_did is None

    def test_set_active_unknown(self, store):
        assert store.set_active_did('did:erynoa:self:0000000000000000') is False
        assert store.get_state().error_code == PasskeyErrorCode.CREDENTIAL_NOT_FOUND

    def test_delete_credential(self, store):
        registered = store.register(RegistrationOptions(set_primary=True)).credential
        assert store.delete_credential(registered.credential_id) is True
        assert store.credential_count == 0
        assert not store.is_authenticated
        assert store.delete_credential(registered.credential_id) is False

    def test_rename(self, store):
        registered = store.register().credential
        assert store.rename_credential(registered.credential_id, 'Phone') is True
        assert store.get_state().credentials[0].display_name == 'Phone'

    def test_clear_all(self, store):
        store.register(RegistrationOptions(set_primary=True))
        store.clear_all()
        state = store.get_state()
        assert state.credentials == ()
        assert state.active_did is None
        assert state.initialized
        assert store.is_available

    def test_refresh_picks_up_external_changes(self, store):
        registered = store.register().credential
        store.service.ledger.delete(registered.credential_id)
        assert store.credential_count == 1
        store.refresh()
        assert store.credential_count == 0


class TestSelectors:
    def test_primary_falls_back_to_first_ed25519(self, store):
        first = store.register().credential
        store.register()
        assert store.primary_credential == first

    def test_primary_none_when_empty(self, store):
        assert store.primary_credential is None
