"""
Local identity provider backed by a KeyValueStore.

A self-contained replacement for a hosted identity service: accounts and the
current session are kept in the same key/value store as the rest of the app,
so a session survives process restarts when the json_file backend is used.
Passwords are stored as salted PBKDF2-SHA256 digests.
"""

import asyncio
import hashlib
import hmac
import os
import uuid

from pydantic import BaseModel, TypeAdapter, ValidationError

from healthgate.domain.errors import AuthError, AuthErrorKind
from healthgate.domain.models import Credentials, Identity
from healthgate.services.common import logger
from healthgate.services.storage import KeyValueStore

ACCOUNTS_KEY = "identity.accounts"
SESSION_KEY = "identity.session"

PBKDF2_ITERATIONS = 200_000


class StoredAccount(BaseModel):
    uid: str
    display_name: str
    email: str
    salt: str
    password_hash: str


_accounts_adapter = TypeAdapter(dict[str, StoredAccount])


def hash_password(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations).hex()


class LocalIdentityProvider:
    """Implements the IdentityProvider protocol against local storage."""

    def __init__(
        self,
        store: KeyValueStore,
        latency_seconds: float = 0.0,
        iterations: int = PBKDF2_ITERATIONS,
    ) -> None:
        self.store = store
        self.latency_seconds = latency_seconds
        self.iterations = iterations
        self.online = True
        self.reset_requests: list[str] = []
        self.logger = logger.bind(component="local_identity_provider")

    async def _round_trip(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if not self.online:
            raise ConnectionError("identity provider unreachable")

    async def _load_accounts(self) -> dict[str, StoredAccount]:
        raw = await self.store.get(ACCOUNTS_KEY)
        if raw is None:
            return {}
        try:
            return _accounts_adapter.validate_json(raw)
        except ValidationError as e:
            raise AuthError(AuthErrorKind.UNKNOWN, "Account database is unreadable") from e

    async def _save_accounts(self, accounts: dict[str, StoredAccount]) -> None:
        await self.store.set(ACCOUNTS_KEY, _accounts_adapter.dump_json(accounts).decode("utf-8"))

    async def _start_session(self, account: StoredAccount) -> Identity:
        identity = Identity(uid=account.uid, display_name=account.display_name, email=account.email)
        await self.store.set(SESSION_KEY, identity.model_dump_json())
        return identity

    async def sign_up(self, credentials: Credentials) -> Identity:
        await self._round_trip()
        email = credentials.email.strip().lower()
        accounts = await self._load_accounts()
        if email in accounts:
            raise AuthError(AuthErrorKind.ACCOUNT_EXISTS, "Email is already registered")

        salt = os.urandom(16)
        digest = await asyncio.to_thread(hash_password, credentials.password, salt, self.iterations)
        account = StoredAccount(
            uid=uuid.uuid4().hex,
            display_name=email.split("@", 1)[0],
            email=email,
            salt=salt.hex(),
            password_hash=digest,
        )
        accounts[email] = account
        await self._save_accounts(accounts)
        self.logger.info("account_created", uid=account.uid)
        return await self._start_session(account)

    async def sign_in(self, credentials: Credentials) -> Identity:
        await self._round_trip()
        email = credentials.email.strip().lower()
        account = (await self._load_accounts()).get(email)
        if account is None:
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "No account found with this email")

        digest = await asyncio.to_thread(
            hash_password, credentials.password, bytes.fromhex(account.salt), self.iterations
        )
        if not hmac.compare_digest(digest, account.password_hash):
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "Incorrect password")
        return await self._start_session(account)

    async def current_identity(self) -> Identity | None:
        raw = await self.store.get(SESSION_KEY)
        if raw is None:
            return None
        try:
            return Identity.model_validate_json(raw)
        except ValidationError:
            self.logger.warning("stored_session_unreadable")
            await self.store.delete(SESSION_KEY)
            return None

    async def sign_out(self) -> None:
        await self.store.delete(SESSION_KEY)

    async def send_password_reset(self, email: str) -> None:
        await self._round_trip()
        normalized = email.strip().lower()
        if normalized not in await self._load_accounts():
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, "No account found with this email")
        self.reset_requests.append(normalized)
        self.logger.info("password_reset_queued")
