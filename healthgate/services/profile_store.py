"""
Durable storage of the user health profile across two layouts.

Layouts kept side by side under stable keys:
- Structured: `profile.v1` holds one versioned JSON envelope (authoritative)
- Legacy: one key per field plus `profile.completed` (older releases)

Migration is one-way and lazy. Legacy keys are read only when the structured
record is missing or undecodable and are never rewritten into the structured
layout by `load`. Every `save` writes both layouts, each attempted regardless
of whether the other succeeded.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from healthgate.domain.errors import PersistError, PersistErrorKind
from healthgate.domain.models import StoredProfileEnvelope, UserProfile
from healthgate.services.common import ChangeNotifier, Listener, Result, logger
from healthgate.services.storage import KeyValueStore

STRUCTURED_PROFILE_KEY = "profile.v1"
LEGACY_COMPLETED_KEY = "profile.completed"
# Set by clear(), removed by the next save(). While set, legacy scalars are ignored on load.
PROFILE_CLEARED_KEY = "profile.cleared"

# UserProfile field -> legacy key
LEGACY_FIELD_KEYS: dict[str, str] = {
    "age": "profile.age",
    "weight": "profile.weight",
    "height_feet": "profile.height_feet",
    "height_inches": "profile.height_inches",
    "blood_sugar_level": "profile.blood_sugar",
    "total_cholesterol": "profile.cholesterol_total",
    "hdl_cholesterol": "profile.cholesterol_hdl",
    "ldl_cholesterol": "profile.cholesterol_ldl",
}

_LEGACY_INT_FIELDS = frozenset({"age", "height_feet", "height_inches"})


def _coerce_legacy_value(field: str, raw: Any) -> int | float | None:
    """Accept a stored scalar only if it has the field's numeric type."""
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return None
    if field in _LEGACY_INT_FIELDS:
        if isinstance(raw, float):
            return int(raw) if raw.is_integer() else None
        return raw
    return float(raw)


def decode_structured_profile(raw: Any) -> UserProfile:
    """Decode the structured layout. Raises PersistError(DECODE_FAILURE)."""
    try:
        if isinstance(raw, str | bytes):
            envelope = StoredProfileEnvelope.model_validate_json(raw)
        elif isinstance(raw, dict):
            envelope = StoredProfileEnvelope.model_validate(raw)
        else:
            raise PersistError(
                PersistErrorKind.DECODE_FAILURE,
                f"unsupported structured record type {type(raw).__name__}",
            )
    except ValidationError as e:
        raise PersistError(PersistErrorKind.DECODE_FAILURE, str(e)) from e
    return envelope.profile


def encode_structured_profile(profile: UserProfile) -> str:
    """Encode the structured layout. Raises PersistError(ENCODE_FAILURE)."""
    try:
        return StoredProfileEnvelope(profile=profile).model_dump_json()
    except (PydanticSerializationError, ValidationError, ValueError, TypeError) as e:
        raise PersistError(PersistErrorKind.ENCODE_FAILURE, str(e)) from e


class ProfileStore:
    """
    Owns the in-memory UserProfile and both persisted layouts.

    Design principles:
    - Never fails outward on read; failures degrade to legacy, then to empty
    - Best-effort writes; one layout failing never prevents the other
    - Observable: listeners fire whenever the in-memory profile changes
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.logger = logger.bind(component="profile_store")
        self._profile = UserProfile()
        self._lock = asyncio.Lock()
        self._changes = ChangeNotifier()

    @property
    def profile(self) -> UserProfile:
        return self._profile

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        return self._changes.add_listener(listener)

    def _set_profile(self, profile: UserProfile) -> None:
        changed = profile != self._profile
        self._profile = profile
        if changed:
            self._changes.notify()

    async def _write_structured(self, profile: UserProfile) -> Result[None, PersistError]:
        try:
            encoded = encode_structured_profile(profile)
            await self.store.set(STRUCTURED_PROFILE_KEY, encoded)
        except PersistError as e:
            self.logger.error("structured_profile_write_failed", kind=e.kind.value, error=e.message)
            return Result.err(e)
        except Exception as e:
            self.logger.exception("structured_profile_write_failed", error=str(e))
            return Result.err(PersistError(PersistErrorKind.WRITE_FAILURE, str(e)))
        return Result.ok(None)

    async def _write_legacy(self, profile: UserProfile) -> Result[None, PersistError]:
        first_error: PersistError | None = None
        entries: list[tuple[str, Any]] = [
            (key, getattr(profile, field))
            for field, key in LEGACY_FIELD_KEYS.items()
            if getattr(profile, field) is not None
        ]
        entries.append((LEGACY_COMPLETED_KEY, profile.is_completed))
        entries.append((PROFILE_CLEARED_KEY, None))

        for key, value in entries:
            try:
                if key == PROFILE_CLEARED_KEY:
                    await self.store.delete(key)
                else:
                    await self.store.set(key, value)
            except Exception as e:
                error = e if isinstance(e, PersistError) else PersistError(
                    PersistErrorKind.WRITE_FAILURE, str(e)
                )
                self.logger.error("legacy_profile_write_failed", key=key, error=error.message)
                first_error = first_error or error

        return Result.err(first_error) if first_error else Result.ok(None)

    async def save(self, profile: UserProfile) -> Result[None, PersistError]:
        """
        Persist `profile` to both layouts.

        Returns:
            Result[None, PersistError]: Ok when at least one layout was written.
            An error is returned only if both layouts failed.
        """
        async with self._lock:
            self._set_profile(profile)
            structured = await self._write_structured(profile)
            legacy = await self._write_legacy(profile)

        if structured.is_err() and legacy.is_err():
            self.logger.error("profile_save_failed", completed=profile.is_completed)
            return Result.err(structured.unwrap_err())

        if structured.is_err() or legacy.is_err():
            self.logger.warning(
                "profile_saved_partially",
                structured_ok=structured.is_ok(),
                legacy_ok=legacy.is_ok(),
            )
        else:
            self.logger.info("profile_saved", completed=profile.is_completed)
        return Result.ok(None)

    async def update(self, **changes: Any) -> Result[None, PersistError]:
        """Validate `changes` against the current profile and save the result."""
        updated = UserProfile.model_validate({**self._profile.model_dump(), **changes})
        return await self.save(updated)

    async def skip_onboarding(self) -> Result[None, PersistError]:
        """Finish onboarding without measurements."""
        return await self.save(UserProfile(is_completed=True))

    async def _read_structured(self) -> UserProfile | None:
        try:
            raw = await self.store.get(STRUCTURED_PROFILE_KEY)
            if raw is None:
                self.logger.debug("structured_profile_absent")
                return None
            return decode_structured_profile(raw)
        except PersistError as e:
            self.logger.warning(
                "structured_profile_unreadable_falling_back", kind=e.kind.value, error=e.message
            )
            return None

    async def _read_legacy_key(self, key: str) -> Any | None:
        try:
            return await self.store.get(key)
        except PersistError as e:
            self.logger.warning("legacy_profile_key_unreadable", key=key, error=e.message)
            return None

    async def _read_legacy(self) -> UserProfile:
        fields: dict[str, Any] = {}
        for field, key in LEGACY_FIELD_KEYS.items():
            value = _coerce_legacy_value(field, await self._read_legacy_key(key))
            if value is not None:
                fields[field] = value
        fields["is_completed"] = (await self._read_legacy_key(LEGACY_COMPLETED_KEY)) is True

        try:
            return UserProfile.model_validate(fields)
        except ValidationError as e:
            invalid = {err["loc"][0] for err in e.errors() if err["loc"]}
            self.logger.warning("legacy_profile_fields_invalid", fields=sorted(map(str, invalid)))
            return UserProfile.model_validate(
                {name: value for name, value in fields.items() if name not in invalid}
            )

    async def load(self) -> UserProfile:
        """Load the profile: structured layout first, legacy keys as fallback. Never raises."""
        async with self._lock:
            profile = await self._read_structured()
            source = "structured"
            if profile is None and (await self._read_legacy_key(PROFILE_CLEARED_KEY)) is True:
                profile = UserProfile()
                source = "cleared"
            elif profile is None:
                profile = await self._read_legacy()
                source = "legacy" if not profile.is_empty() else "empty"
            self._set_profile(profile)

        self.logger.info("profile_loaded", source=source, completed=profile.is_completed)
        return profile

    async def clear(self) -> None:
        """
        Logical reset: empty in-memory profile, structured record removed,
        legacy completion flag reset. Legacy scalar keys stay in place.
        """
        async with self._lock:
            self._set_profile(UserProfile())
            try:
                await self.store.delete(STRUCTURED_PROFILE_KEY)
            except PersistError as e:
                self.logger.error("structured_profile_delete_failed", error=e.message)
            try:
                await self.store.set(LEGACY_COMPLETED_KEY, False)
                await self.store.set(PROFILE_CLEARED_KEY, True)
            except PersistError as e:
                self.logger.error("legacy_completion_reset_failed", error=e.message)

        self.logger.info("profile_cleared")
