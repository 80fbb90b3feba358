"""
Simulated biometric platform.

Stands in for the device facility (Face ID / Touch ID / Optic ID style
hardware) during development, demos and tests. Outcomes are scripted: queued
outcomes are returned in order, then `default_outcome` is used.
"""

import asyncio
from collections import deque
from collections.abc import Iterable

from healthgate.domain.models import BiometricModality, BiometricOutcome
from healthgate.services.common import logger


class SimulatedBiometricPlatform:
    """Scriptable implementation of the BiometricPlatform protocol."""

    def __init__(
        self,
        modality: BiometricModality = BiometricModality.FACE,
        enrolled: bool = True,
        outcomes: Iterable[BiometricOutcome] | None = None,
        default_outcome: BiometricOutcome = BiometricOutcome.SUCCESS,
        delay_seconds: float = 0.0,
    ) -> None:
        """Initialize the simulated platform.

        Args:
            modality: Hardware the simulated device reports
            enrolled: Whether a credential (face, finger, iris) is enrolled
            outcomes: Outcomes returned by successive evaluations
            default_outcome: Outcome once the scripted ones are used up
            delay_seconds: Time the simulated prompt stays on screen
        """
        self.modality = modality
        self.enrolled = enrolled
        self.default_outcome = default_outcome
        self.delay_seconds = delay_seconds
        self.evaluation_count = 0
        self.reasons: list[str] = []
        self._outcomes: deque[BiometricOutcome] = deque(outcomes or [])
        self.logger = logger.bind(component="simulated_biometric_platform", modality=modality.value)

    def queue_outcomes(self, *outcomes: BiometricOutcome) -> None:
        self._outcomes.extend(outcomes)

    def capability(self) -> BiometricModality:
        return self.modality

    def can_evaluate(self) -> bool:
        return self.modality is not BiometricModality.NONE and self.enrolled

    async def evaluate(self, reason: str) -> BiometricOutcome:
        self.evaluation_count += 1
        self.reasons.append(reason)

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        outcome = self._outcomes.popleft() if self._outcomes else self.default_outcome
        self.logger.debug("simulated_prompt_resolved", outcome=outcome.value)
        return outcome
