"""Session-scoped key/value storage.

Sessions are identified by a secure random id sent to the user agent as a
cookie; the values live server-side only. The veiled OAuth states and the
bearer token remembered by `/login` are both kept here.

The store is an injected collaborator: `InMemorySessionStore` serves tests
and single-replica deployments, other backends implement `SessionStore`.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog
from aiohttp import web

logger = structlog.get_logger()


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class Session:
    """Values stored for one user agent session."""

    session_id: str
    values: dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0

    def __post_init__(self):
        if self.expires_at == 0.0:
            self.expires_at = self.created_at + 3600

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


class SessionStore(ABC):
    """Abstract store of string values scoped to a session id."""

    @abstractmethod
    async def get(self, session_id: str, key: str) -> str | None:
        """Return the value of `key` or None if absent or the session expired."""

    @abstractmethod
    async def put(self, session_id: str, key: str, value: str) -> None:
        """Set `key` to `value`, creating the session if needed."""

    @abstractmethod
    async def put_if_absent(self, session_id: str, key: str, value: str) -> bool:
        """Set `key` only if it is not already present. Returns True if set."""

    @abstractmethod
    async def delete(self, session_id: str, key: str) -> bool:
        """Remove `key`. Returns True if it existed."""

    @abstractmethod
    async def destroy(self, session_id: str) -> bool:
        """Remove the whole session. Returns True if it existed."""

    @abstractmethod
    async def exists(self, session_id: str) -> bool:
        """Return whether a live session with this id is stored."""

    @abstractmethod
    async def rename(self, session_id: str, new_session_id: str) -> bool:
        """Move the session and its values to a new id. Returns True if it existed."""


class InMemorySessionStore(SessionStore):
    """In-memory session storage with expiration cleanup.

    Sessions have an absolute lifetime counted from their creation; every
    value stored in a session expires with it.

    Safe for concurrent use from many request tasks via an asyncio lock.
    """

    def __init__(
        self,
        lifetime: float = 3600.0,
        cleanup_interval: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the store.

        Args:
            lifetime: Session lifetime in seconds
            cleanup_interval: How often the background cleanup runs in seconds
            clock: Time source, replaceable in tests
        """
        self._sessions: dict[str, Session] = {}
        self._lifetime = lifetime
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._cleanup_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Start the background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

    def _live_session(self, session_id: str) -> Session | None:
        # caller holds the lock
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            del self._sessions[session_id]
            return None
        return session

    def _session_for_write(self, session_id: str) -> Session:
        session = self._live_session(session_id)
        if session is None:
            now = self._clock()
            session = Session(
                session_id=session_id,
                created_at=now,
                expires_at=now + self._lifetime,
            )
            self._sessions[session_id] = session
        return session

    async def get(self, session_id: str, key: str) -> str | None:
        async with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return None
            return session.values.get(key)

    async def put(self, session_id: str, key: str, value: str) -> None:
        async with self._lock:
            self._session_for_write(session_id).values[key] = value

    async def put_if_absent(self, session_id: str, key: str, value: str) -> bool:
        async with self._lock:
            session = self._session_for_write(session_id)
            if key in session.values:
                return False
            session.values[key] = value
            return True

    async def delete(self, session_id: str, key: str) -> bool:
        async with self._lock:
            session = self._live_session(session_id)
            if session is None or key not in session.values:
                return False
            del session.values[key]
            return True

    async def destroy(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def exists(self, session_id: str) -> bool:
        async with self._lock:
            return self._live_session(session_id) is not None

    async def rename(self, session_id: str, new_session_id: str) -> bool:
        async with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return False
            del self._sessions[session_id]
            session.session_id = new_session_id
            self._sessions[new_session_id] = session
            return True

    async def get_session_count(self) -> int:
        """Get the current number of stored sessions."""
        async with self._lock:
            return len(self._sessions)

    async def _cleanup_loop(self) -> None:
        """Background task to remove expired sessions."""
        while True:
            try:
                await asyncio.sleep(self._cleanup_interval)
                removed = await self._cleanup_expired()
                if removed:
                    logger.debug("Expired sessions removed", count=removed)
            except asyncio.CancelledError:
                break

    async def _cleanup_expired(self) -> int:
        """Remove all expired sessions.

        Returns:
            Number of sessions removed
        """
        now = self._clock()
        async with self._lock:
            expired_ids = [
                sid for sid, session in self._sessions.items() if session.is_expired(now)
            ]
            for sid in expired_ids:
                del self._sessions[sid]
        return len(expired_ids)


@dataclass
class SessionContext:
    """A session id bound to the store that holds its values.

    The id changes when the session is renewed; the session middleware sends
    the new id to the user agent.
    """

    session_id: str
    store: SessionStore

    async def get(self, key: str) -> str | None:
        return await self.store.get(self.session_id, key)

    async def put(self, key: str, value: str) -> None:
        await self.store.put(self.session_id, key, value)

    async def put_if_absent(self, key: str, value: str) -> bool:
        return await self.store.put_if_absent(self.session_id, key, value)

    async def delete(self, key: str) -> bool:
        return await self.store.delete(self.session_id, key)

    async def destroy(self) -> bool:
        return await self.store.destroy(self.session_id)

    async def renew(self) -> None:
        """Move the session and its values to a new random id."""
        new_id = new_session_id()
        await self.store.rename(self.session_id, new_id)
        self.session_id = new_id


REQUEST_SESSION_KEY = web.RequestKey("spi_oauth.session", SessionContext)


def get_request_session(request: web.Request) -> SessionContext:
    """Return the session attached to a request by the session middleware."""
    try:
        return request[REQUEST_SESSION_KEY]
    except KeyError:
        raise RuntimeError("session middleware is not installed") from None
