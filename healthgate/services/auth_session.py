"""
Remote identity session with biometric gating.

The session manager delegates credential checks to an identity provider and
decides, at process start, whether a persisted session must first be unlocked
with a biometric challenge. All state-mutating operations on one manager are
serialised by a single asyncio.Lock.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from healthgate.config import AuthConfig
from healthgate.domain.errors import AuthError, AuthErrorKind, BiometricError, BiometricErrorKind
from healthgate.domain.models import Credentials, Identity
from healthgate.services.biometric_gate import BiometricGate
from healthgate.services.common import ChangeNotifier, Listener, Result, logger

T = TypeVar("T")

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class IdentityProvider(Protocol):
    """
    Protocol for the remote identity service.

    Expected failures are raised as AuthError; connection problems may surface
    as ConnectionError or TimeoutError and are mapped to NETWORK_FAILURE.
    """

    async def sign_in(self, credentials: Credentials) -> Identity: ...

    async def sign_up(self, credentials: Credentials) -> Identity: ...

    async def current_identity(self) -> Identity | None: ...

    async def sign_out(self) -> None: ...

    async def send_password_reset(self, email: str) -> None: ...


class AuthSessionManager:
    """
    Owns the identity session and the biometric unlock requirement.

    State exposed to the app state machine:
    - identity: the provider identity, if any
    - is_authenticated: identity proven for this launch
    - requires_biometric_auth: a persisted session waits for a biometric challenge
    - is_loading: a provider call or challenge is in flight
    """

    def __init__(
        self,
        provider: IdentityProvider,
        biometric_gate: BiometricGate,
        config: AuthConfig | None = None,
    ) -> None:
        self.provider = provider
        self.biometric_gate = biometric_gate
        self.config = config or AuthConfig()
        self.logger = logger.bind(component="auth_session")
        self.last_error: str | None = None

        self._identity: Identity | None = None
        self._is_authenticated = False
        self._requires_biometric_auth = False
        self._is_loading = False
        self._lock = asyncio.Lock()
        self._changes = ChangeNotifier()

    @property
    def identity(self) -> Identity | None:
        return self._identity

    @property
    def is_authenticated(self) -> bool:
        return self._is_authenticated

    @property
    def requires_biometric_auth(self) -> bool:
        return self._requires_biometric_auth

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        return self._changes.add_listener(listener)

    def _update(self, **changes: Any) -> None:
        changed = False
        for name, value in changes.items():
            attr = f"_{name}"
            if getattr(self, attr) != value:
                setattr(self, attr, value)
                changed = True
        if changed:
            self._changes.notify()

    async def _call_provider(self, operation: str, call: Awaitable[T]) -> Result[T, AuthError]:
        """Run one provider call with a timeout, mapping every failure to AuthError."""
        try:
            value = await asyncio.wait_for(call, timeout=self.config.request_timeout_seconds)
        except AuthError as e:
            self.logger.info("identity_provider_rejected", operation=operation, kind=e.kind.value)
            return Result.err(e)
        except (TimeoutError, ConnectionError) as e:
            self.logger.warning("identity_provider_unreachable", operation=operation, error=str(e))
            return Result.err(
                AuthError(AuthErrorKind.NETWORK_FAILURE, "Network error. Please check your connection")
            )
        except Exception as e:
            self.logger.exception("identity_provider_error", operation=operation, error=str(e))
            return Result.err(AuthError(AuthErrorKind.UNKNOWN, f"Authentication failed: {e}"))
        return Result.ok(value)

    def _validate_email(self, email: str) -> AuthError | None:
        if not _EMAIL_PATTERN.match(email.strip()):
            return AuthError(AuthErrorKind.INVALID_EMAIL, "Invalid email address")
        return None

    def _validate_sign_up(self, credentials: Credentials) -> AuthError | None:
        if error := self._validate_email(credentials.email):
            return error
        if credentials.confirm_password is not None and (
            credentials.password != credentials.confirm_password
        ):
            return AuthError(AuthErrorKind.PASSWORD_MISMATCH, "Passwords do not match")
        if len(credentials.password) < self.config.min_password_length:
            return AuthError(
                AuthErrorKind.WEAK_PASSWORD,
                f"Password must be at least {self.config.min_password_length} characters",
            )
        return None

    async def _authenticate(
        self,
        operation: str,
        call: Callable[[Credentials], Awaitable[Identity]],
        credentials: Credentials,
    ) -> Result[Identity, AuthError]:
        self.last_error = None
        self._update(is_loading=True)
        try:
            result = await self._call_provider(operation, call(credentials))
        finally:
            self._update(is_loading=False)

        if result.is_err():
            self.last_error = result.unwrap_err().message
            return result

        identity = result.unwrap()
        # Credentials already proved identity; the biometric step applies from the next launch.
        self._update(identity=identity, is_authenticated=True, requires_biometric_auth=False)
        self.logger.info(f"{operation}_succeeded", uid=identity.uid)
        return result

    async def sign_in(self, credentials: Credentials) -> Result[Identity, AuthError]:
        async with self._lock:
            if error := self._validate_email(credentials.email):
                self.last_error = error.message
                return Result.err(error)
            return await self._authenticate("sign_in", self.provider.sign_in, credentials)

    async def sign_up(self, credentials: Credentials) -> Result[Identity, AuthError]:
        async with self._lock:
            if error := self._validate_sign_up(credentials):
                self.last_error = error.message
                self.logger.info("sign_up_rejected", kind=error.kind.value)
                return Result.err(error)
            return await self._authenticate("sign_up", self.provider.sign_up, credentials)

    async def resume_session(self) -> None:
        """Restore a persisted session at process start."""
        async with self._lock:
            biometric_enabled = await self.biometric_gate.preference.load()
            result = await self._call_provider("current_identity", self.provider.current_identity())
            identity = result.unwrap_or(None)

            if identity is None:
                self._update(identity=None, is_authenticated=False, requires_biometric_auth=False)
            elif biometric_enabled:
                self._update(identity=identity, is_authenticated=False, requires_biometric_auth=True)
            else:
                self._update(identity=identity, is_authenticated=True, requires_biometric_auth=False)

        self.logger.info(
            "session_resumed",
            has_session=identity is not None,
            biometric_enabled=biometric_enabled,
            requires_biometric_auth=self._requires_biometric_auth,
        )

    async def login_with_biometrics(self) -> Result[None, BiometricError]:
        """
        Unlock a persisted session with a biometric challenge.

        On failure state is left as it was; `is_loading` is cleared on every
        exit, including cancellation. No prompt is shown when there is no
        session to unlock or the session is already unlocked.
        """
        if self._is_loading:
            kind = BiometricErrorKind.ALREADY_IN_PROGRESS
            return Result.err(BiometricError(kind, "Authentication already in progress"))

        async with self._lock:
            # Session state may have changed while waiting for the lock.
            if self._identity is None:
                error = BiometricError(BiometricErrorKind.SYSTEM_ERROR, "No saved session to unlock")
                self.last_error = error.message
                self.logger.warning("biometric_login_without_session")
                return Result.err(error)
            if self._is_authenticated:
                self.logger.debug("biometric_login_skipped", reason="already_authenticated")
                return Result.ok(None)

            self.last_error = None
            self._update(is_loading=True)
            try:
                reason = self.biometric_gate.reason_for(self.biometric_gate.config.login_reason)
                result = await self.biometric_gate.evaluate(reason)
            finally:
                self._update(is_loading=False)

            if result.is_err():
                error = result.unwrap_err()
                self.last_error = error.message
                self.logger.info("biometric_login_failed", kind=error.kind.value)
                return Result.err(error)

            self._update(is_authenticated=True, requires_biometric_auth=False)
            self.logger.info("biometric_login_succeeded", uid=self._identity.uid)
            return Result.ok(None)

    def skip_biometric_challenge(self) -> None:
        """Fall back to credential entry instead of the biometric challenge."""
        self._update(requires_biometric_auth=False)
        self.logger.info("biometric_challenge_skipped")

    async def sign_out(self) -> Result[None, AuthError]:
        """
        End the session locally and at the provider.

        Local state is always cleared. The biometric preference is untouched so
        the next sign-in does not require re-enrollment.
        """
        async with self._lock:
            result = await self._call_provider("sign_out", self.provider.sign_out())
            self._update(identity=None, is_authenticated=False, requires_biometric_auth=False)

        if result.is_err():
            self.last_error = result.unwrap_err().message
            self.logger.warning("provider_sign_out_failed", error=self.last_error)
        else:
            self.last_error = None
            self.logger.info("signed_out")
        return result

    async def send_password_reset(self, email: str) -> Result[None, AuthError]:
        async with self._lock:
            if error := self._validate_email(email):
                self.last_error = error.message
                return Result.err(error)

            self.last_error = None
            self._update(is_loading=True)
            try:
                result = await self._call_provider(
                    "send_password_reset", self.provider.send_password_reset(email.strip())
                )
            finally:
                self._update(is_loading=False)

        if result.is_err():
            self.last_error = result.unwrap_err().message
        else:
            self.logger.info("password_reset_requested")
        return result
