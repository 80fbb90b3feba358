"""
Biometric capability checks, challenges and the unlock preference.

The gate wraps a platform-mediated challenge (face, fingerprint, iris) behind
a Protocol so the interactive system prompt can be simulated in tests. Only
one challenge may be in flight at a time: overlapping requests are rejected,
never queued, so system prompts do not stack.
"""

import asyncio
from typing import Protocol

from healthgate.config import BiometricConfig
from healthgate.domain.errors import (
    BiometricError,
    BiometricErrorKind,
    PersistError,
    PersistErrorKind,
)
from healthgate.domain.models import BiometricCapability, BiometricModality, BiometricOutcome
from healthgate.services.common import Result, logger
from healthgate.services.storage import KeyValueStore

BIOMETRIC_ENABLED_KEY = "biometric.enabled"


class BiometricPlatform(Protocol):
    """
    Protocol for the device's biometric facility.

    `capability` and `can_evaluate` are cheap synchronous queries.
    `evaluate` shows the system prompt and suspends until the user is done.
    """

    def capability(self) -> BiometricModality: ...

    def can_evaluate(self) -> bool: ...

    async def evaluate(self, reason: str) -> BiometricOutcome: ...


_OUTCOME_ERRORS: dict[BiometricOutcome, BiometricErrorKind] = {
    BiometricOutcome.USER_CANCELLED: BiometricErrorKind.USER_CANCELLED,
    BiometricOutcome.NOT_ENROLLED: BiometricErrorKind.NOT_ENROLLED,
    BiometricOutcome.LOCKED_OUT: BiometricErrorKind.LOCKED_OUT,
    BiometricOutcome.SYSTEM_ERROR: BiometricErrorKind.SYSTEM_ERROR,
}


def describe_biometric_error(kind: BiometricErrorKind, label: str) -> str:
    """Human-readable message for a failed challenge."""
    messages = {
        BiometricErrorKind.NOT_AVAILABLE: f"{label} not available on this device",
        BiometricErrorKind.NOT_ENROLLED: f"{label} not set up",
        BiometricErrorKind.USER_CANCELLED: "Authentication cancelled",
        BiometricErrorKind.LOCKED_OUT: f"{label} locked out. Use passcode",
        BiometricErrorKind.ALREADY_IN_PROGRESS: "Authentication already in progress",
        BiometricErrorKind.SYSTEM_ERROR: f"{label} authentication failed",
    }
    return messages[kind]


class BiometricPreference:
    """The persisted "user opted into biometric unlock" flag."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.is_enabled = False
        self.logger = logger.bind(component="biometric_preference")

    async def load(self) -> bool:
        """Refresh the cached flag from storage. Unreadable storage reads as disabled."""
        try:
            value = await self.store.get(BIOMETRIC_ENABLED_KEY)
        except PersistError as e:
            self.logger.warning("biometric_preference_unreadable", error=str(e))
            value = None
        self.is_enabled = value is True
        return self.is_enabled

    async def set(self, enabled: bool) -> Result[None, PersistError]:
        """Persist the flag. The cached value only changes once the write succeeded."""
        try:
            await self.store.set(BIOMETRIC_ENABLED_KEY, enabled)
        except PersistError as e:
            self.logger.error("biometric_preference_write_failed", enabled=enabled, error=str(e))
            return Result.err(e)
        except Exception as e:
            self.logger.exception("biometric_preference_write_failed", enabled=enabled, error=str(e))
            return Result.err(PersistError(PersistErrorKind.WRITE_FAILURE, str(e)))
        self.is_enabled = enabled
        self.logger.info("biometric_preference_saved", enabled=enabled)
        return Result.ok(None)


class BiometricGate:
    """
    Mediates every biometric interaction.

    Design principles:
    - `query_capability` never fails; lack of hardware is a value, not an error
    - At most one challenge in flight per gate
    - Failures are returned as BiometricError values and mirrored in `last_error`
    """

    def __init__(
        self,
        platform: BiometricPlatform,
        preference: BiometricPreference,
        config: BiometricConfig | None = None,
    ) -> None:
        self.platform = platform
        self.preference = preference
        self.config = config or BiometricConfig()
        self.last_error: str | None = None
        self.logger = logger.bind(component="biometric_gate")
        self._in_flight = False

    @property
    def is_evaluating(self) -> bool:
        return self._in_flight

    def query_capability(self) -> BiometricCapability:
        try:
            modality = BiometricModality(self.platform.capability())
            can_evaluate = modality is not BiometricModality.NONE and bool(
                self.platform.can_evaluate()
            )
        except Exception as e:
            self.logger.warning("biometric_capability_query_failed", error=str(e))
            return BiometricCapability()

        return BiometricCapability(modality=modality, can_evaluate=can_evaluate)

    def reason_for(self, template: str) -> str:
        return template.format(label=self.query_capability().display_name)

    def _fail(
        self, kind: BiometricErrorKind, capability: BiometricCapability
    ) -> Result[BiometricModality, BiometricError]:
        message = describe_biometric_error(kind, capability.display_name)
        self.last_error = message
        self.logger.info(
            "biometric_evaluation_failed", kind=kind.value, modality=capability.modality.value
        )
        return Result.err(BiometricError(kind, message))

    async def evaluate(self, reason: str) -> Result[BiometricModality, BiometricError]:
        """
        Run one interactive challenge.

        Returns:
            Result[BiometricModality, BiometricError]: the modality that verified
            the user, or the reason the challenge did not succeed.
        """
        if self._in_flight:
            self.logger.warning("biometric_evaluation_rejected", reason="already_in_progress")
            kind = BiometricErrorKind.ALREADY_IN_PROGRESS
            label = self.query_capability().display_name
            return Result.err(BiometricError(kind, describe_biometric_error(kind, label)))

        self._in_flight = True
        self.last_error = None
        try:
            capability = self.query_capability()
            if not capability.is_available:
                return self._fail(BiometricErrorKind.NOT_AVAILABLE, capability)
            if not capability.can_evaluate:
                return self._fail(BiometricErrorKind.NOT_ENROLLED, capability)

            self.logger.info("biometric_evaluation_started", modality=capability.modality.value)
            try:
                outcome = await asyncio.wait_for(
                    self.platform.evaluate(reason),
                    timeout=self.config.evaluation_timeout_seconds,
                )
            except TimeoutError:
                self.logger.warning(
                    "biometric_evaluation_timeout",
                    timeout_seconds=self.config.evaluation_timeout_seconds,
                )
                return self._fail(BiometricErrorKind.SYSTEM_ERROR, capability)
            except asyncio.CancelledError:
                self.logger.info("biometric_evaluation_cancelled")
                raise
            except Exception as e:
                self.logger.exception("biometric_platform_error", error=str(e))
                return self._fail(BiometricErrorKind.SYSTEM_ERROR, capability)

            if outcome == BiometricOutcome.SUCCESS:
                self.logger.info("biometric_evaluation_succeeded", modality=capability.modality.value)
                return Result.ok(capability.modality)

            kind = _OUTCOME_ERRORS.get(outcome, BiometricErrorKind.SYSTEM_ERROR)
            return self._fail(kind, capability)
        finally:
            self._in_flight = False

    async def enroll(self) -> Result[bool, BiometricError]:
        """Challenge the user and, on success, opt them into biometric unlock."""
        result = await self.evaluate(self.reason_for(self.config.enroll_reason))
        if result.is_err():
            return Result.err(result.unwrap_err())

        saved = await self.preference.set(True)
        if saved.is_err():
            label = self.query_capability().display_name
            self.last_error = f"Failed to enable {label}: {saved.unwrap_err().message}"
            return Result.err(BiometricError(BiometricErrorKind.SYSTEM_ERROR, self.last_error))

        self.logger.info("biometric_enrolled", modality=result.unwrap().value)
        return Result.ok(True)

    async def disable(self) -> Result[None, PersistError]:
        """Opt out of biometric unlock. No challenge required."""
        result = await self.preference.set(False)
        self.logger.info("biometric_disabled", persisted=result.is_ok())
        return result
