"""
Tests for BiometricGate and the persisted biometric preference.

Covers:
- Capability queries never failing
- Outcome to error mapping and human-readable messages
- Single in-flight challenge (overlapping calls rejected, not queued)
- Timeouts and cancellation
- Enrollment and disabling
"""

import asyncio

import pytest

from adapters.local.biometric_platform import SimulatedBiometricPlatform
from healthgate.config import BiometricConfig
from healthgate.domain.errors import BiometricErrorKind, PersistError, PersistErrorKind
from healthgate.domain.models import (
    MODALITY_LABELS,
    BiometricCapability,
    BiometricModality,
    BiometricOutcome,
)
from healthgate.services.biometric_gate import (
    BIOMETRIC_ENABLED_KEY,
    BiometricGate,
    BiometricPreference,
    describe_biometric_error,
)
from healthgate.services.storage import InMemoryKeyValueStore


class BrokenPlatform:
    """Test double whose every call raises."""

    def capability(self) -> BiometricModality:
        raise OSError("LocalAuthentication unavailable")

    def can_evaluate(self) -> bool:
        raise OSError("LocalAuthentication unavailable")

    async def evaluate(self, reason: str) -> BiometricOutcome:
        raise OSError("LocalAuthentication unavailable")


class RaisingEvaluatePlatform(SimulatedBiometricPlatform):
    async def evaluate(self, reason: str) -> BiometricOutcome:
        self.evaluation_count += 1
        raise RuntimeError("secure enclave fault")


class ReadOnlyStore(InMemoryKeyValueStore):
    async def set(self, key: str, value: object) -> None:
        raise PersistError(PersistErrorKind.WRITE_FAILURE, "read-only")


def make_gate(
    platform: object | None = None,
    store: InMemoryKeyValueStore | None = None,
    config: BiometricConfig | None = None,
) -> BiometricGate:
    store = store or InMemoryKeyValueStore()
    return BiometricGate(
        platform or SimulatedBiometricPlatform(),  # type: ignore[arg-type]
        BiometricPreference(store),
        config,
    )


class TestCapability:
    @pytest.mark.parametrize(
        "modality,enrolled,can_evaluate",
        [
            (BiometricModality.FACE, True, True),
            (BiometricModality.FINGERPRINT, False, False),
            (BiometricModality.IRIS, True, True),
            (BiometricModality.NONE, True, False),
        ],
    )
    def test_query_capability(
        self, modality: BiometricModality, enrolled: bool, can_evaluate: bool
    ) -> None:
        gate = make_gate(SimulatedBiometricPlatform(modality=modality, enrolled=enrolled))

        capability = gate.query_capability()

        assert capability.modality is modality
        assert capability.can_evaluate is can_evaluate

    def test_query_capability_never_raises(self) -> None:
        capability = make_gate(BrokenPlatform()).query_capability()

        assert capability == BiometricCapability()
        assert not capability.is_available

    def test_every_modality_has_a_label(self) -> None:
        assert set(MODALITY_LABELS) == set(BiometricModality)
        assert BiometricCapability(modality=BiometricModality.FACE).display_name == "Face ID"

    def test_every_error_kind_has_a_message(self) -> None:
        for kind in BiometricErrorKind:
            assert describe_biometric_error(kind, "Touch ID")


class TestEvaluate:
    async def test_success_returns_modality(self) -> None:
        platform = SimulatedBiometricPlatform(modality=BiometricModality.FINGERPRINT)
        gate = make_gate(platform)

        result = await gate.evaluate("Sign in")

        assert result.is_ok()
        assert result.unwrap() is BiometricModality.FINGERPRINT
        assert platform.reasons == ["Sign in"]
        assert gate.last_error is None

    @pytest.mark.parametrize(
        "outcome,kind",
        [
            (BiometricOutcome.USER_CANCELLED, BiometricErrorKind.USER_CANCELLED),
            (BiometricOutcome.NOT_ENROLLED, BiometricErrorKind.NOT_ENROLLED),
            (BiometricOutcome.LOCKED_OUT, BiometricErrorKind.LOCKED_OUT),
            (BiometricOutcome.SYSTEM_ERROR, BiometricErrorKind.SYSTEM_ERROR),
        ],
    )
    async def test_platform_outcomes_map_to_errors(
        self, outcome: BiometricOutcome, kind: BiometricErrorKind
    ) -> None:
        gate = make_gate(SimulatedBiometricPlatform(outcomes=[outcome]))

        result = await gate.evaluate("Sign in")

        assert result.is_err()
        assert result.unwrap_err().kind is kind
        assert gate.last_error == result.unwrap_err().message

    async def test_no_hardware_is_not_available(self) -> None:
        platform = SimulatedBiometricPlatform(modality=BiometricModality.NONE)
        gate = make_gate(platform)

        result = await gate.evaluate("Sign in")

        assert result.unwrap_err().kind is BiometricErrorKind.NOT_AVAILABLE
        assert platform.evaluation_count == 0

    async def test_hardware_without_enrollment_is_not_enrolled(self) -> None:
        platform = SimulatedBiometricPlatform(enrolled=False)
        gate = make_gate(platform)

        result = await gate.evaluate("Sign in")

        assert result.unwrap_err().kind is BiometricErrorKind.NOT_ENROLLED
        assert platform.evaluation_count == 0

    async def test_locked_out_message_names_the_modality(self) -> None:
        platform = SimulatedBiometricPlatform(
            modality=BiometricModality.FINGERPRINT, outcomes=[BiometricOutcome.LOCKED_OUT]
        )
        gate = make_gate(platform)

        await gate.evaluate("Sign in")

        assert gate.last_error == "Touch ID locked out. Use passcode"

    async def test_platform_exception_is_system_error(self) -> None:
        gate = make_gate(RaisingEvaluatePlatform())

        result = await gate.evaluate("Sign in")

        assert result.unwrap_err().kind is BiometricErrorKind.SYSTEM_ERROR
        assert not gate.is_evaluating

    async def test_timeout_surfaces_as_system_error(self) -> None:
        platform = SimulatedBiometricPlatform(delay_seconds=1.0)
        gate = make_gate(platform, config=BiometricConfig(evaluation_timeout_seconds=0.01))

        result = await gate.evaluate("Sign in")

        assert result.unwrap_err().kind is BiometricErrorKind.SYSTEM_ERROR
        assert not gate.is_evaluating

    async def test_overlapping_evaluation_is_rejected(self) -> None:
        platform = SimulatedBiometricPlatform(delay_seconds=0.05)
        gate = make_gate(platform)

        first = asyncio.create_task(gate.evaluate("first"))
        await asyncio.sleep(0)
        second = await gate.evaluate("second")

        assert second.unwrap_err().kind is BiometricErrorKind.ALREADY_IN_PROGRESS
        assert (await first).is_ok()
        assert platform.evaluation_count == 1
        assert platform.reasons == ["first"]

    async def test_gate_accepts_new_challenge_after_previous_finishes(self) -> None:
        platform = SimulatedBiometricPlatform(
            outcomes=[BiometricOutcome.USER_CANCELLED, BiometricOutcome.SUCCESS]
        )
        gate = make_gate(platform)

        assert (await gate.evaluate("one")).is_err()
        assert (await gate.evaluate("two")).is_ok()
        assert platform.evaluation_count == 2

    async def test_cancellation_clears_in_flight_flag(self) -> None:
        gate = make_gate(SimulatedBiometricPlatform(delay_seconds=1.0))

        task = asyncio.create_task(gate.evaluate("Sign in"))
        await asyncio.sleep(0.01)
        assert gate.is_evaluating

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not gate.is_evaluating


class TestEnrollment:
    async def test_enroll_persists_preference(self) -> None:
        store = InMemoryKeyValueStore()
        platform = SimulatedBiometricPlatform()
        gate = make_gate(platform, store)

        result = await gate.enroll()

        assert result.unwrap() is True
        assert gate.preference.is_enabled
        assert await store.get(BIOMETRIC_ENABLED_KEY) is True
        assert platform.reasons == [
            "Enable Face ID to quickly and securely access your account"
        ]

    async def test_failed_enroll_leaves_preference_unchanged(self) -> None:
        store = InMemoryKeyValueStore({BIOMETRIC_ENABLED_KEY: False})
        gate = make_gate(
            SimulatedBiometricPlatform(outcomes=[BiometricOutcome.USER_CANCELLED]), store
        )

        result = await gate.enroll()

        assert result.unwrap_err().kind is BiometricErrorKind.USER_CANCELLED
        assert gate.last_error == "Authentication cancelled"
        assert await store.get(BIOMETRIC_ENABLED_KEY) is False
        assert not gate.preference.is_enabled

    async def test_enroll_reports_unsaved_preference(self) -> None:
        gate = make_gate(store=ReadOnlyStore())

        result = await gate.enroll()

        assert result.unwrap_err().kind is BiometricErrorKind.SYSTEM_ERROR
        assert gate.last_error is not None
        assert gate.last_error.startswith("Failed to enable Face ID")
        assert not gate.preference.is_enabled

    async def test_failed_disable_keeps_cached_preference(self) -> None:
        gate = make_gate(store=ReadOnlyStore({BIOMETRIC_ENABLED_KEY: True}))
        await gate.preference.load()

        result = await gate.disable()

        assert result.unwrap_err().kind is PersistErrorKind.WRITE_FAILURE
        assert gate.preference.is_enabled

    async def test_disable_does_not_challenge(self) -> None:
        store = InMemoryKeyValueStore({BIOMETRIC_ENABLED_KEY: True})
        platform = SimulatedBiometricPlatform()
        gate = make_gate(platform, store)
        await gate.preference.load()

        result = await gate.disable()

        assert result.is_ok()
        assert platform.evaluation_count == 0
        assert not gate.preference.is_enabled
        assert await store.get(BIOMETRIC_ENABLED_KEY) is False


class TestBiometricPreference:
    @pytest.mark.parametrize("stored,expected", [(True, True), (False, False), ("yes", False)])
    async def test_load(self, stored: object, expected: bool) -> None:
        preference = BiometricPreference(InMemoryKeyValueStore({BIOMETRIC_ENABLED_KEY: stored}))

        assert await preference.load() is expected

    async def test_absent_key_is_disabled(self) -> None:
        assert await BiometricPreference(InMemoryKeyValueStore()).load() is False
