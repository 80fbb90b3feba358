"""
Error taxonomy for the authentication and persistence services.

Each error is an exception carrying a `kind` so it can travel inside a
`Result` and still be raised by `Result.unwrap()` when a caller wants that.
"""

from enum import Enum


class BiometricErrorKind(str, Enum):
    NOT_AVAILABLE = "not_available"
    NOT_ENROLLED = "not_enrolled"
    USER_CANCELLED = "user_cancelled"
    LOCKED_OUT = "locked_out"
    ALREADY_IN_PROGRESS = "already_in_progress"
    SYSTEM_ERROR = "system_error"


class AuthErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    NETWORK_FAILURE = "network_failure"
    ACCOUNT_EXISTS = "account_exists"
    INVALID_EMAIL = "invalid_email"
    WEAK_PASSWORD = "weak_password"
    PASSWORD_MISMATCH = "password_mismatch"
    UNKNOWN = "unknown"


class PersistErrorKind(str, Enum):
    ENCODE_FAILURE = "encode_failure"
    WRITE_FAILURE = "write_failure"
    DECODE_FAILURE = "decode_failure"


class HealthGateError(Exception):
    """Base class for errors surfaced by healthgate services."""

    def __init__(self, kind: Enum, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind.value!r}, {self.message!r})"


class BiometricError(HealthGateError):
    kind: BiometricErrorKind

    def __init__(self, kind: BiometricErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)


class AuthError(HealthGateError):
    kind: AuthErrorKind

    def __init__(self, kind: AuthErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)


class PersistError(HealthGateError):
    kind: PersistErrorKind

    def __init__(self, kind: PersistErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)
