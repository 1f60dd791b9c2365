"""Account records, server-side sessions and password resets."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import re

from .errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import Actor, LoginResult, ResetTicket
from .rooms import KEY_PREFIX
from .security import generate_token, hash_secret, verify_secret
from .state import utc_now_iso
from .store import KeyValueStore

logger = logging.getLogger(__name__)

USERS_SET_KEY = f"{KEY_PREFIX}:users"

_USERNAME_PATTERN = re.compile(r"^[a-z0-9_.\-]{1,32}$")


def normalize_username(value: str | None) -> str:
    return (value or "").strip().lower()


def validate_username(value: str | None) -> str:
    username = normalize_username(value)
    if not username:
        raise ValidationError("Username is required", reason="missing_username")
    if not _USERNAME_PATTERN.match(username):
        raise ValidationError("Username may use a-z, 0-9, '_', '-' and '.' only", reason="invalid_username")
    return username


def user_key(username: str) -> str:
    return f"{KEY_PREFIX}:user:{username}"


@dataclass
class AccountService:
    store: KeyValueStore
    server_salt: str
    dm_username: str
    session_ttl_seconds: int = 7 * 24 * 3600
    reset_ttl_seconds: int = 3600

    def _session_key(self, token: str) -> str:
        return f"{KEY_PREFIX}:session:{hash_secret(token, self.server_salt)}"

    def _reset_key(self, token: str) -> str:
        return f"{KEY_PREFIX}:pwreset:{hash_secret(token, self.server_salt)}"

    def actor_for(self, username: str) -> Actor:
        return Actor(username=username, is_dm=username == self.dm_username)

    def signup(self, username: str, password_hash: str) -> str:
        username = validate_username(username)
        if not password_hash:
            raise ValidationError("Password hash is required", reason="missing_password_hash")
        if self.store.get(user_key(username)) is not None:
            raise ConflictError(f"User {username} already exists", reason="user_exists")

        self.store.set(
            user_key(username),
            {
                "username": username,
                "passwordHash": hash_secret(password_hash, self.server_salt),
                "createdAt": utc_now_iso(),
            },
        )
        if username != self.dm_username:
            self.store.add_to_set(USERS_SET_KEY, username)
        logger.info("Created account %s", username)
        return username

    def login(self, username: str, password_hash: str) -> LoginResult:
        username = validate_username(username)
        if not password_hash:
            raise ValidationError("Password hash is required", reason="missing_password_hash")

        user = self.store.get(user_key(username))
        if user is None:
            raise NotFoundError(f"User {username} not found", reason="not_found")
        if not verify_secret(password_hash, user["passwordHash"], self.server_salt):
            logger.warning("Rejected login for %s: bad password", username)
            raise AuthenticationError("Wrong password", reason="bad_password")

        token = generate_token()
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.session_ttl_seconds)
        self.store.set(
            self._session_key(token),
            {"username": username, "createdAt": utc_now_iso()},
            ttl_seconds=self.session_ttl_seconds,
        )
        actor = self.actor_for(username)
        logger.info("Opened session for %s (%s)", username, actor.role)
        return LoginResult(username=username, token=token, role=actor.role, expires_at=expires_at.isoformat())

    def logout(self, token: str) -> None:
        self.store.delete(self._session_key(token))

    def resolve_session(self, token: str | None) -> Actor:
        if not token:
            raise AuthenticationError("Sign in first", reason="missing_session")
        record = self.store.get(self._session_key(token))
        if record is None:
            raise AuthenticationError("Session expired or unknown", reason="invalid_session")
        return self.actor_for(record["username"])

    def request_reset(self, actor: Actor, username: str) -> ResetTicket:
        if not actor.is_dm:
            raise AuthorizationError("Only the DM can issue password resets")
        username = validate_username(username)
        if self.store.get(user_key(username)) is None:
            raise NotFoundError(f"User {username} not found", reason="not_found")

        token = generate_token()
        self.store.set(
            self._reset_key(token),
            {"username": username, "createdAt": utc_now_iso()},
            ttl_seconds=self.reset_ttl_seconds,
        )
        logger.info("Issued password reset for %s", username)
        return ResetTicket(username=username, token=token, expires_in_seconds=self.reset_ttl_seconds)

    def reset_password(self, token: str, password_hash: str) -> str:
        token = (token or "").strip()
        if not token:
            raise ValidationError("Reset token is required", reason="missing_token")
        if not password_hash:
            raise ValidationError("Password hash is required", reason="missing_password_hash")

        reset = self.store.get(self._reset_key(token))
        username = normalize_username((reset or {}).get("username"))
        if not username:
            raise ValidationError("Reset token is invalid or expired", reason="invalid_or_expired")

        user = self.store.get(user_key(username))
        if user is None:
            raise NotFoundError(f"User {username} not found", reason="not_found")

        self.store.set(user_key(username), {**user, "passwordHash": hash_secret(password_hash, self.server_salt)})
        self.store.delete(self._reset_key(token))
        logger.info("Password reset completed for %s", username)
        return username

    def list_users(self, actor: Actor) -> list[str]:
        if not actor.is_dm:
            raise AuthorizationError("Only the DM can list players")
        members = (normalize_username(member) for member in self.store.set_members(USERS_SET_KEY))
        return sorted({member for member in members if member and member != self.dm_username})
