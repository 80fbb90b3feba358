"""
Core services for the application.

This package contains the stateful services: biometric gating, the identity
session, profile persistence, and the app state machine that combines them.
"""

from .app_context import AppContext, app_session, create_store
from .app_state import AppStateMachine, derive_app_state
from .auth_session import AuthSessionManager, IdentityProvider
from .biometric_gate import BiometricGate, BiometricPlatform, BiometricPreference
from .common import Result
from .profile_store import ProfileStore
from .storage import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

__all__ = [
    "AppContext",
    "AppStateMachine",
    "AuthSessionManager",
    "BiometricGate",
    "BiometricPlatform",
    "BiometricPreference",
    "IdentityProvider",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "ProfileStore",
    "Result",
    "app_session",
    "create_store",
    "derive_app_state",
]
