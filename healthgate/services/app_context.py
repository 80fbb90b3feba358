"""
Composition root for the authentication and profile services.

Replaces process-wide singletons with one explicit context object: it is
constructed once at process start, injected into whatever consumes it, and
torn down at process exit.

Startup sequence:
1. Build the key/value store from configuration
2. Wire BiometricGate, AuthSessionManager, ProfileStore and AppStateMachine
3. Resume the persisted session and load the profile
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from healthgate.config import AppConfig, StorageConfig, get_config
from healthgate.domain.models import AppState
from healthgate.services.app_state import AppStateMachine
from healthgate.services.auth_session import AuthSessionManager, IdentityProvider
from healthgate.services.biometric_gate import BiometricGate, BiometricPlatform, BiometricPreference
from healthgate.services.common import configure_logging, logger
from healthgate.services.profile_store import ProfileStore
from healthgate.services.storage import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore


def create_store(config: StorageConfig) -> KeyValueStore:
    """Create the configured key/value store."""
    if config.backend == "memory":
        return InMemoryKeyValueStore()
    if config.backend == "json_file":
        return JsonFileKeyValueStore(config.path)
    raise ValueError(f"Unknown storage backend: {config.backend}")


@dataclass
class AppContext:
    """Everything the UI layer needs, wired together."""

    config: AppConfig
    store: KeyValueStore
    biometric_gate: BiometricGate
    session: AuthSessionManager
    profile_store: ProfileStore
    state_machine: AppStateMachine

    @property
    def state(self) -> AppState:
        return self.state_machine.state

    @classmethod
    def build(
        cls,
        platform: BiometricPlatform,
        identity_provider: IdentityProvider,
        config: AppConfig | None = None,
        store: KeyValueStore | None = None,
    ) -> "AppContext":
        config = config or get_config()
        store = store or create_store(config.storage)

        gate = BiometricGate(platform, BiometricPreference(store), config.biometric)
        session = AuthSessionManager(identity_provider, gate, config.auth)
        profile_store = ProfileStore(store)
        state_machine = AppStateMachine(session, profile_store)

        return cls(
            config=config,
            store=store,
            biometric_gate=gate,
            session=session,
            profile_store=profile_store,
            state_machine=state_machine,
        )

    async def start(self) -> AppState:
        """Resume the persisted session and load the profile."""
        await self.session.resume_session()
        await self.profile_store.load()
        logger.info("app_context_started", state=self.state.value)
        return self.state

    def close(self) -> None:
        self.state_machine.close()
        logger.info("app_context_closed")


@asynccontextmanager
async def app_session(
    platform: BiometricPlatform,
    identity_provider: IdentityProvider,
    config: AppConfig | None = None,
    store: KeyValueStore | None = None,
) -> AsyncIterator[AppContext]:
    """
    Async context manager for the application lifecycle.

    Ensures the context is torn down even if the body raises.
    """
    config = config or get_config()
    configure_logging(config.logging.level, "console" if config.debug else config.logging.format)

    context = AppContext.build(platform, identity_provider, config=config, store=store)
    try:
        await context.start()
        yield context
    finally:
        context.close()
