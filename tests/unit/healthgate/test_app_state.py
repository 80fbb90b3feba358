"""
Tests for app state derivation and the state machine.

The derivation table is checked exhaustively; the machine is driven through
real session and profile store instances backed by an in-memory store.
"""

import pytest

from adapters.local.biometric_platform import SimulatedBiometricPlatform
from adapters.local.identity_provider import LocalIdentityProvider
from healthgate.domain.models import AppState, BiometricOutcome, Credentials, UserProfile
from healthgate.services.app_state import AppStateMachine, derive_app_state
from healthgate.services.auth_session import AuthSessionManager
from healthgate.services.biometric_gate import BiometricGate, BiometricPreference
from healthgate.services.profile_store import ProfileStore
from healthgate.services.storage import InMemoryKeyValueStore

CREDENTIALS = Credentials(email="sam@example.com", password="secret-pass")


@pytest.mark.parametrize(
    "is_authenticated,profile_completed,requires_biometric_auth,expected",
    [
        (True, True, True, AppState.READY),
        (True, True, False, AppState.READY),
        (True, False, True, AppState.BIOMETRIC_CHALLENGE),
        (True, False, False, AppState.ONBOARDING),
        (False, True, True, AppState.BIOMETRIC_CHALLENGE),
        (False, True, False, AppState.LOGGED_OUT),
        (False, False, True, AppState.BIOMETRIC_CHALLENGE),
        (False, False, False, AppState.LOGGED_OUT),
    ],
)
def test_derive_app_state(
    is_authenticated: bool, profile_completed: bool, requires_biometric_auth: bool, expected: AppState
) -> None:
    assert derive_app_state(is_authenticated, profile_completed, requires_biometric_auth) is expected


class Harness:
    def __init__(self, store: InMemoryKeyValueStore | None = None) -> None:
        self.store = store or InMemoryKeyValueStore()
        self.platform = SimulatedBiometricPlatform()
        self.provider = LocalIdentityProvider(self.store, iterations=1_000)
        self.gate = BiometricGate(self.platform, BiometricPreference(self.store))
        self.session = AuthSessionManager(self.provider, self.gate)
        self.profile_store = ProfileStore(self.store)
        self.machine = AppStateMachine(self.session, self.profile_store)
        self.transitions: list[tuple[AppState, AppState]] = []
        self.machine.subscribe(lambda prev, cur: self.transitions.append((prev, cur)))

    def restart(self) -> "Harness":
        """A new process over the same persisted store."""
        self.machine.close()
        return Harness(self.store)


class TestAppStateMachine:
    async def test_initial_state_is_logged_out(self) -> None:
        harness = Harness()

        assert harness.machine.state is AppState.LOGGED_OUT
        assert not harness.machine.is_onboarding

    async def test_sign_up_then_onboarding_then_ready(self) -> None:
        harness = Harness()

        await harness.session.sign_up(CREDENTIALS)
        assert harness.machine.state is AppState.ONBOARDING
        assert harness.machine.is_onboarding

        await harness.profile_store.save(UserProfile(age=30, is_completed=True))
        assert harness.machine.state is AppState.READY

        assert harness.transitions == [
            (AppState.LOGGED_OUT, AppState.ONBOARDING),
            (AppState.ONBOARDING, AppState.READY),
        ]

    async def test_loading_flag_does_not_produce_transitions(self) -> None:
        harness = Harness()

        await harness.session.sign_in(CREDENTIALS)

        assert harness.transitions == []
        assert harness.machine.state is AppState.LOGGED_OUT

    async def test_restart_with_biometrics_goes_through_challenge(self) -> None:
        harness = Harness()
        await harness.session.sign_up(CREDENTIALS)
        await harness.gate.enroll()
        await harness.profile_store.save(UserProfile(is_completed=True))

        restarted = harness.restart()
        await restarted.session.resume_session()
        await restarted.profile_store.load()
        assert restarted.machine.state is AppState.BIOMETRIC_CHALLENGE

        restarted.platform.queue_outcomes(BiometricOutcome.USER_CANCELLED)
        await restarted.session.login_with_biometrics()
        assert restarted.machine.state is AppState.BIOMETRIC_CHALLENGE

        await restarted.session.login_with_biometrics()
        assert restarted.machine.state is AppState.READY
        assert restarted.transitions == [
            (AppState.LOGGED_OUT, AppState.BIOMETRIC_CHALLENGE),
            (AppState.BIOMETRIC_CHALLENGE, AppState.READY),
        ]

    async def test_sign_out_returns_to_logged_out(self) -> None:
        harness = Harness()
        await harness.session.sign_up(CREDENTIALS)
        await harness.profile_store.save(UserProfile(is_completed=True))

        await harness.session.sign_out()

        assert harness.machine.state is AppState.LOGGED_OUT

    async def test_clearing_profile_returns_to_onboarding(self) -> None:
        harness = Harness()
        await harness.session.sign_up(CREDENTIALS)
        await harness.profile_store.save(UserProfile(is_completed=True))

        await harness.profile_store.clear()

        assert harness.machine.state is AppState.ONBOARDING

    async def test_unsubscribe_and_close(self) -> None:
        harness = Harness()
        calls: list[AppState] = []
        unsubscribe = harness.machine.subscribe(lambda prev, cur: calls.append(cur))

        unsubscribe()
        await harness.session.sign_up(CREDENTIALS)
        assert calls == []

        harness.machine.close()
        await harness.profile_store.skip_onboarding()
        assert harness.machine.state is AppState.ONBOARDING
