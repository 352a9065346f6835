"""Session-based authentication.

Sign-in stores an opaque token in a server-side :class:`SessionStore` and
puts only that token into the signed Flask session cookie. Protected views
are wrapped with :func:`login_required`, which asks the :class:`AuthGate`
to resolve the token before the view body runs. Signing out deletes the
server-side record, so a replayed cookie is rejected afterwards.
"""

from __future__ import annotations

import functools
import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis
from flask import current_app, g, session
from werkzeug.security import check_password_hash

from .errors import PersistenceError, Unauthorized
from .storage import UserRepository

logger = logging.getLogger(__name__)

SESSION_TOKEN_KEY = "token"


class SessionStore(Protocol):
    def create(self, username: str) -> str:
        """Start a session for ``username`` and return its token."""

    def resolve(self, token: str) -> Optional[str]:
        """Return the username bound to ``token`` or ``None`` if it is not live."""

    def destroy(self, token: str) -> None:
        """End the session. Unknown tokens are ignored."""

    def ping(self) -> None:
        """Raise :class:`PersistenceError` if the store is unreachable."""


class InMemorySessionStore(SessionStore):
    def __init__(self, ttl: int = 3600, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def create(self, username: str) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            now = self._clock()
            # Expired entries are otherwise only dropped when their token is resolved again.
            expired = [key for key, (_, expires_at) in self._sessions.items() if now >= expires_at]
            for key in expired:
                del self._sessions[key]
            self._sessions[token] = (username, now + self._ttl)
        return token

    def resolve(self, token: str) -> Optional[str]:
        with self._lock:
            entry = self._sessions.get(token)
            if entry is None:
                return None
            username, expires_at = entry
            if self._clock() >= expires_at:
                del self._sessions[token]
                return None
            return username

    def destroy(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def ping(self) -> None:
        return None


class RedisSessionStore(SessionStore):
    """Sessions kept in Redis under ``session:<token>`` with a TTL."""

    prefix = "session:"

    def __init__(self, client: redis.Redis, ttl: int = 3600) -> None:
        self._client = client
        self._ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 3600, timeout: Optional[float] = None) -> "RedisSessionStore":
        client = redis.Redis.from_url(url, decode_responses=True, socket_timeout=timeout)
        return cls(client, ttl=ttl)

    def _key(self, token: str) -> str:
        return f"{self.prefix}{token}"

    def create(self, username: str) -> str:
        token = secrets.token_urlsafe(32)
        try:
            self._client.setex(self._key(token), self._ttl, username)
        except redis.RedisError as exc:
            raise PersistenceError(f"Failed to store session: {exc}") from exc
        return token

    def resolve(self, token: str) -> Optional[str]:
        try:
            return self._client.get(self._key(token))
        except redis.RedisError as exc:
            raise PersistenceError(f"Failed to read session: {exc}") from exc

    def destroy(self, token: str) -> None:
        try:
            self._client.delete(self._key(token))
        except redis.RedisError as exc:
            raise PersistenceError(f"Failed to delete session: {exc}") from exc

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as exc:
            raise PersistenceError(f"Failed to reach Redis: {exc}") from exc


class AuthGate:
    """Decides whether a request carrying a session token may proceed.

    With ``enabled=False`` every request is allowed and :meth:`authenticate`
    returns ``None``.
    """

    def __init__(
        self,
        users: UserRepository,
        sessions: SessionStore,
        *,
        enabled: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self.users = users
        self.sessions = sessions
        self.enabled = enabled
        self._timeout = timeout

    def sign_in(self, username: str, password: str) -> str:
        user = self.users.get_user(username, timeout=self._timeout)
        if user is None or not check_password_hash(user.password_hash, password):
            logger.info("Rejected sign-in for '%s'", username)
            raise Unauthorized("Invalid username or password")

        token = self.sessions.create(user.username)
        logger.info("User '%s' signed in", user.username)
        return token

    def sign_out(self, token: Optional[str]) -> None:
        if token:
            self.sessions.destroy(token)

    def authenticate(self, token: Optional[str]) -> Optional[str]:
        if not self.enabled:
            return None
        if not token:
            raise Unauthorized("Not logged in")

        username = self.sessions.resolve(token)
        if username is None:
            raise Unauthorized("Session expired or invalid")
        return username


def login_required(view):
    """Run the auth gate before ``view``; the username lands on ``g.username``."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        gate: AuthGate = current_app.config["AUTH_GATE"]
        g.username = gate.authenticate(session.get(SESSION_TOKEN_KEY))
        return view(*args, **kwargs)

    return wrapper


__all__ = [
    "AuthGate",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SESSION_TOKEN_KEY",
    "SessionStore",
    "login_required",
]
