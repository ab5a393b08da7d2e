"""Ephemeral per-conversation session state.

The store is a thin typed layer over a key-value backend. Backends are
injected: an in-memory dict for tests and single-process deployments, or
Redis (optionally with a TTL) for production. There is no locking; the
gateway serializes turns per session and updates are last-write-wins.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from ussd_engine.ussd.types import SessionState

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when updating a session that does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionBackend(Protocol):
    """Raw key-value storage for serialized session state."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        ...


class InMemorySessionBackend:
    """Dict-backed backend. Lost on process restart."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class RedisSessionBackend:
    """Redis-backed backend with an optional expiry per write."""

    def __init__(self, client: Any, ttl_seconds: int | None = None, prefix: str = "ussd:session:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int | None = None) -> RedisSessionBackend:
        import redis.asyncio as redis

        return cls(redis.from_url(url, decode_responses=True), ttl_seconds=ttl_seconds)

    async def get(self, key: str) -> str | None:
        value = await self.client.get(self.prefix + key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def set(self, key: str, value: str) -> None:
        await self.client.set(self.prefix + key, value, ex=self.ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.client.delete(self.prefix + key)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        await self.client.aclose()


class SessionStore:
    """Typed session store."""

    def __init__(self, backend: SessionBackend | None = None):
        self.backend = backend or InMemorySessionBackend()

    async def create(self, session_id: str, **fields: Any) -> SessionState:
        """Create (or reset) the session for this id."""
        state = SessionState(session_id=session_id, **fields)
        await self._save(state)
        return state

    async def get(self, session_id: str) -> SessionState | None:
        raw = await self.backend.get(session_id)
        if raw is None:
            return None
        return SessionState.model_validate_json(raw)

    async def exists(self, session_id: str) -> bool:
        return await self.backend.get(session_id) is not None

    async def update(self, session_id: str, **changes: Any) -> SessionState:
        """Merge changes into an existing session.

        Raises:
            SessionNotFoundError: if the session is absent.
        """
        state = await self.get(session_id)
        if state is None:
            raise SessionNotFoundError(session_id)
        merged = state.model_copy(update=changes)
        # Re-validate so nested models and decimals survive the round trip
        merged = SessionState.model_validate(merged.model_dump())
        await self._save(merged)
        return merged

    async def save(self, state: SessionState) -> SessionState:
        """Persist a full state object for an existing session."""
        if not await self.exists(state.session_id):
            raise SessionNotFoundError(state.session_id)
        await self._save(state)
        return state

    async def delete(self, session_id: str) -> None:
        await self.backend.delete(session_id)
        logger.debug("Deleted session %s", session_id)

    async def ping(self) -> bool:
        """Check that the backend is reachable."""
        return await self.backend.ping()

    async def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()

    async def _save(self, state: SessionState) -> None:
        await self.backend.set(state.session_id, state.model_dump_json())


def build_session_store(backend: str, redis_url: str, ttl_seconds: int | None) -> SessionStore:
    """Create the store selected by SESSION_BACKEND."""
    if backend == "redis":
        return SessionStore(RedisSessionBackend.from_url(redis_url, ttl_seconds=ttl_seconds))
    if backend != "memory":
        raise ValueError(f"Unknown SESSION_BACKEND: {backend}")
    return SessionStore(InMemorySessionBackend())
