"""
Single source of truth for the top-level application state.

The state is a pure function of three inputs and is recomputed whenever the
session manager or the profile store reports a change. Subscribers are
notified only when the derived state actually changes.
"""

from collections.abc import Callable

from healthgate.domain.models import AppState
from healthgate.services.auth_session import AuthSessionManager
from healthgate.services.common import logger
from healthgate.services.profile_store import ProfileStore

StateListener = Callable[[AppState, AppState], None]


def derive_app_state(
    is_authenticated: bool, profile_completed: bool, requires_biometric_auth: bool
) -> AppState:
    """
    Precedence: an authenticated user with a completed profile is always READY;
    the biometric requirement only matters when not already READY.
    ONBOARDING is the authenticated branch of the logged-out screens.
    """
    if is_authenticated and profile_completed:
        return AppState.READY
    if requires_biometric_auth:
        return AppState.BIOMETRIC_CHALLENGE
    if is_authenticated:
        return AppState.ONBOARDING
    return AppState.LOGGED_OUT


class AppStateMachine:
    """Derives AppState from the session manager and profile store. Owns no data."""

    def __init__(self, session: AuthSessionManager, profile_store: ProfileStore) -> None:
        self.session = session
        self.profile_store = profile_store
        self.logger = logger.bind(component="app_state_machine")
        self._listeners: list[StateListener] = []
        self._state = AppState.LOGGED_OUT
        self._unsubscribe = [
            session.add_listener(self.refresh),
            profile_store.add_listener(self.refresh),
        ]
        self.refresh()

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def is_onboarding(self) -> bool:
        """Authenticated but the health profile is not completed yet."""
        return self.session.is_authenticated and not self.profile_store.profile.is_completed

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call `listener(previous, current)` on every transition."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> AppState:
        current = derive_app_state(
            self.session.is_authenticated,
            self.profile_store.profile.is_completed,
            self.session.requires_biometric_auth,
        )
        previous, self._state = self._state, current
        if current is not previous:
            self.logger.info("app_state_changed", previous=previous.value, current=current.value)
            for listener in list(self._listeners):
                try:
                    listener(previous, current)
                except Exception as e:
                    self.logger.exception("state_listener_failed", error=str(e))
        return current

    def close(self) -> None:
        """Detach from the session manager and profile store."""
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []
        self._listeners.clear()
