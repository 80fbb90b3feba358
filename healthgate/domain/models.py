"""
Domain models for authentication gating and health profile persistence.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation and for the structured profile encoding.
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AppState(str, Enum):
    """Top-level screen states the application can be in."""

    LOGGED_OUT = "logged_out"
    BIOMETRIC_CHALLENGE = "biometric_challenge"
    ONBOARDING = "onboarding"
    READY = "ready"


class BiometricModality(str, Enum):
    """Biometric hardware a device can offer."""

    NONE = "none"
    FACE = "face"
    FINGERPRINT = "fingerprint"
    IRIS = "iris"


# Every modality must appear here; the mapping is checked in the test suite.
MODALITY_LABELS: dict[BiometricModality, str] = {
    BiometricModality.NONE: "Biometric",
    BiometricModality.FACE: "Face ID",
    BiometricModality.FINGERPRINT: "Touch ID",
    BiometricModality.IRIS: "Optic ID",
}


class BiometricOutcome(str, Enum):
    """Result of a single platform-mediated challenge."""

    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    NOT_ENROLLED = "not_enrolled"
    LOCKED_OUT = "locked_out"
    SYSTEM_ERROR = "system_error"


class BiometricCapability(BaseModel):
    """What the device can do right now. Recomputed on every query, never persisted."""

    model_config = ConfigDict(frozen=True)

    modality: BiometricModality = BiometricModality.NONE
    can_evaluate: bool = False

    @property
    def is_available(self) -> bool:
        return self.modality is not BiometricModality.NONE

    @property
    def display_name(self) -> str:
        return MODALITY_LABELS[self.modality]


class Identity(BaseModel):
    """Remote identity obtained from the identity provider."""

    model_config = ConfigDict(frozen=True)

    uid: str = Field(min_length=1, description="Opaque provider-assigned identifier")
    display_name: str = ""
    email: str


class Credentials(BaseModel):
    """Email/password pair entered by the user."""

    model_config = ConfigDict(frozen=True)

    email: str
    password: str = Field(repr=False)
    confirm_password: str | None = Field(default=None, repr=False)


class UserProfile(BaseModel):
    """
    User health profile.

    All numeric fields stay unset until the user supplies them. `is_completed`
    is set explicitly by onboarding and is never derived from field presence.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    age: int | None = Field(default=None, ge=0, le=150)
    height_feet: int | None = Field(default=None, ge=0, le=9)
    height_inches: int | None = Field(default=None, ge=0, le=11)
    weight: float | None = Field(default=None, ge=0.0, description="Pounds")
    blood_sugar_level: float | None = Field(default=None, ge=0.0, description="mg/dL")
    total_cholesterol: float | None = Field(default=None, ge=0.0, description="mg/dL")
    hdl_cholesterol: float | None = Field(default=None, ge=0.0, description="mg/dL")
    ldl_cholesterol: float | None = Field(default=None, ge=0.0, description="mg/dL")
    is_completed: bool = False

    def is_empty(self) -> bool:
        """True when no measurement has been supplied and onboarding is not done."""
        return self == UserProfile()


PROFILE_SCHEMA_VERSION = 1


class StoredProfileEnvelope(BaseModel):
    """Structured persistence layout: a single versioned record."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = PROFILE_SCHEMA_VERSION
    profile: UserProfile
