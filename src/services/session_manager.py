"""
Voice Session Manager.

Tracks the lifecycle of a recording session tied to a consultation
section: idle -> recording -> stopped -> processed. It knows nothing
about what is later done with the transcript.

Only one session may be recording per (consultation, section) pair.
The store enforces that atomically, so two concurrent ``start`` calls
yield exactly one session and one ``SessionAlreadyActive``.
"""

from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional, Protocol

import redis.asyncio as aioredis

from src.config import SessionBackend, get_settings
from src.errors import (
    InvalidInput,
    InvalidSessionState,
    SessionAlreadyActive,
    SessionNotFound,
    StorageFailure,
)
from src.logging_config import get_logger
from src.schemas.session import ALLOWED_TRANSITIONS, RecordingSession, SessionState
from src.services.keyed_locks import KeyedLocks

logger = get_logger(__name__)

# Redis key layout
SESSION_KEY = "intake:session:{}"          # Hash per session
ACTIVE_KEY = "intake:active:{}:{}"         # Recording session id per (consultation, section)
STATE_SET_KEY = "intake:sessions:{}"       # Set of session ids per state
LOCK_KEY = "intake:lock:{}"                # Short-lived transition lock per session
PROCESSING_KEY = "intake:processing:{}"    # Processing claim per session

LOCK_TTL_MS = 5000
LOCK_WAIT_SECONDS = 5.0
LOCK_POLL_SECONDS = 0.02
# A crashed processor gives its claim back after this long
PROCESSING_TTL_MS = 10 * 60 * 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(Protocol):
    async def claim_active(self, key: tuple[str, str], session_id: str) -> Optional[str]:
        """Claim the recording slot for ``key``; returns the holder's id if taken."""
        ...

    async def release_active(self, key: tuple[str, str], session_id: str) -> None: ...

    async def put(self, session: RecordingSession, previous: SessionState | None = None) -> None: ...

    async def get(self, session_id: str) -> RecordingSession | None: ...

    async def list_by_state(self, state: SessionState) -> list[RecordingSession]: ...

    async def claim_processing(self, session_id: str) -> bool:
        """True if this caller now owns processing of ``session_id``."""
        ...

    async def release_processing(self, session_id: str) -> None: ...

    def transition_lock(self, session_id: str): ...


class InMemorySessionStore:
    """Single-process store: a dict of sessions plus the active-pair index."""

    def __init__(self) -> None:
        self._sessions: dict[str, RecordingSession] = {}
        self._active: dict[tuple[str, str], str] = {}
        self._processing: set[str] = set()
        self._key_locks = KeyedLocks()
        self._session_locks = KeyedLocks()

    async def claim_active(self, key: tuple[str, str], session_id: str) -> Optional[str]:
        async with self._key_locks.hold(key):
            holder = self._active.get(key)
            if holder is not None:
                return holder
            self._active[key] = session_id
            return None

    async def release_active(self, key: tuple[str, str], session_id: str) -> None:
        async with self._key_locks.hold(key):
            if self._active.get(key) == session_id:
                del self._active[key]

    async def put(self, session: RecordingSession, previous: SessionState | None = None) -> None:
        self._sessions[session.id] = session.model_copy()

    async def get(self, session_id: str) -> RecordingSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    async def list_by_state(self, state: SessionState) -> list[RecordingSession]:
        matching = [s for s in self._sessions.values() if s.state == state]
        return [s.model_copy() for s in sorted(matching, key=lambda s: s.created_at)]

    async def claim_processing(self, session_id: str) -> bool:
        if session_id in self._processing:
            return False
        self._processing.add(session_id)
        return True

    async def release_processing(self, session_id: str) -> None:
        self._processing.discard(session_id)

    @asynccontextmanager
    async def transition_lock(self, session_id: str) -> AsyncIterator[None]:
        async with self._session_locks.hold(session_id):
            yield


class RedisSessionStore:
    """
    Shared store for multi-process deployments.

    Sessions are hashes; the active index is a plain key claimed with
    ``SET NX`` so only one writer wins a (consultation, section) pair.
    """

    def __init__(self, redis: aioredis.Redis | None = None) -> None:
        self._redis = redis

    async def initialize(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(get_settings().redis_url, decode_responses=True)
            logger.info("session_store_initialized", backend="redis")

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    @property
    def redis(self) -> aioredis.Redis:
        if not self._redis:
            raise RuntimeError("RedisSessionStore not initialized. Call initialize() first.")
        return self._redis

    async def claim_active(self, key: tuple[str, str], session_id: str) -> Optional[str]:
        claimed = await self.redis.set(ACTIVE_KEY.format(*key), session_id, nx=True)
        if claimed:
            return None
        return await self.redis.get(ACTIVE_KEY.format(*key)) or "unknown"

    async def release_active(self, key: tuple[str, str], session_id: str) -> None:
        active_key = ACTIVE_KEY.format(*key)
        if await self.redis.get(active_key) == session_id:
            await self.redis.delete(active_key)

    async def put(self, session: RecordingSession, previous: SessionState | None = None) -> None:
        data = {k: v for k, v in session.model_dump(mode="json").items() if v is not None}
        await self.redis.hset(SESSION_KEY.format(session.id), mapping=data)
        if previous is not None and previous != session.state:
            await self.redis.srem(STATE_SET_KEY.format(previous.value), session.id)
        await self.redis.sadd(STATE_SET_KEY.format(session.state.value), session.id)

    async def get(self, session_id: str) -> RecordingSession | None:
        data = await self.redis.hgetall(SESSION_KEY.format(session_id))
        if not data:
            return None
        return RecordingSession.model_validate(data)

    async def list_by_state(self, state: SessionState) -> list[RecordingSession]:
        ids = await self.redis.smembers(STATE_SET_KEY.format(state.value))
        sessions = []
        for session_id in ids:
            session = await self.get(session_id)
            if session is not None and session.state == state:
                sessions.append(session)
        return sorted(sessions, key=lambda s: s.created_at)

    async def claim_processing(self, session_id: str) -> bool:
        claimed = await self.redis.set(PROCESSING_KEY.format(session_id), "1", nx=True, px=PROCESSING_TTL_MS)
        return bool(claimed)

    async def release_processing(self, session_id: str) -> None:
        await self.redis.delete(PROCESSING_KEY.format(session_id))

    @asynccontextmanager
    async def transition_lock(self, session_id: str) -> AsyncIterator[None]:
        lock_key = LOCK_KEY.format(session_id)
        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + LOCK_WAIT_SECONDS
        while not await self.redis.set(lock_key, token, nx=True, px=LOCK_TTL_MS):
            if loop.time() >= deadline:
                raise StorageFailure("Session is busy", {"session_id": session_id})
            await asyncio.sleep(LOCK_POLL_SECONDS)
        try:
            yield
        finally:
            if await self.redis.get(lock_key) == token:
                await self.redis.delete(lock_key)


class VoiceSessionManager:
    """State machine over a ``SessionStore``."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    async def start(self, consultation_id: str, section_id: str) -> RecordingSession:
        """Open a recording session; at most one per (consultation, section)."""
        consultation_id = (consultation_id or "").strip()
        section_id = (section_id or "").strip()
        if not consultation_id or not section_id:
            raise InvalidInput("consultation_id and section_id are required")

        session = RecordingSession(
            id=str(uuid.uuid4()),
            consultation_id=consultation_id,
            section_id=section_id,
            created_at=_utcnow(),
        )
        holder = await self.store.claim_active(session.key, session.id)
        if holder is not None:
            logger.info(
                "session_start_rejected",
                consultation_id=consultation_id,
                section_id=section_id,
                active_session_id=holder,
            )
            raise SessionAlreadyActive(
                "A recording is already in progress for this section",
                {"session_id": holder},
            )

        self._advance(session, SessionState.RECORDING)
        try:
            await self.store.put(session)
        except Exception:
            await self.store.release_active(session.key, session.id)
            raise
        logger.info(
            "session_started",
            session_id=session.id,
            consultation_id=consultation_id,
            section_id=section_id,
        )
        return session

    async def stop(self, session_id: str, transcript: str = "") -> RecordingSession:
        """Stop a recording session and attach its transcript (may be empty)."""
        async with self.store.transition_lock(session_id):
            session = await self.get(session_id)
            previous = session.state
            self._advance(session, SessionState.STOPPED)
            session.transcript = transcript or ""
            session.stopped_at = _utcnow()
            await self.store.put(session, previous)
            await self.store.release_active(session.key, session.id)

        logger.info("session_stopped", session_id=session_id, transcript_length=len(session.transcript))
        return session

    async def mark_processed(self, session_id: str, outcome: str) -> RecordingSession:
        """Record that the transcript was consumed downstream."""
        async with self.store.transition_lock(session_id):
            session = await self.get(session_id)
            previous = session.state
            self._advance(session, SessionState.PROCESSED)
            session.processed_at = _utcnow()
            session.processing_outcome = outcome
            await self.store.put(session, previous)
            await self.store.release_processing(session_id)

        logger.info("session_processed", session_id=session_id, outcome=outcome)
        return session

    async def claim_for_processing(self, session_id: str) -> RecordingSession:
        """
        Take exclusive ownership of a stopped session's transcript.

        Raises ``InvalidSessionState`` if the session is not stopped or
        another caller is already processing it.
        """
        async with self.store.transition_lock(session_id):
            session = await self.get(session_id)
            if session.state != SessionState.STOPPED:
                raise InvalidSessionState(
                    "Only stopped sessions can be processed",
                    {"session_id": session_id, "state": session.state.value},
                )
            if not await self.store.claim_processing(session_id):
                raise InvalidSessionState(
                    "Session is already being processed",
                    {"session_id": session_id, "state": "processing"},
                )
        return session

    async def release_processing(self, session_id: str) -> None:
        """Give a claimed session back so it can be processed later."""
        await self.store.release_processing(session_id)
        logger.info("session_processing_released", session_id=session_id)

    async def get(self, session_id: str) -> RecordingSession:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFound("Session not found", {"session_id": session_id})
        return session

    async def list_stopped(self) -> list[RecordingSession]:
        return await self.store.list_by_state(SessionState.STOPPED)

    @staticmethod
    def _advance(session: RecordingSession, target: SessionState) -> None:
        if target not in ALLOWED_TRANSITIONS[session.state]:
            raise InvalidSessionState(
                f"Cannot move session from {session.state.value} to {target.value}",
                {"session_id": session.id, "state": session.state.value},
            )
        session.state = target


_memory_store: InMemorySessionStore | None = None
_redis_store: RedisSessionStore | None = None


async def get_session_store() -> SessionStore:
    """Store for the configured ``SESSION_BACKEND``."""
    global _memory_store, _redis_store
    if get_settings().session_backend == SessionBackend.REDIS:
        if _redis_store is None:
            _redis_store = RedisSessionStore()
            await _redis_store.initialize()
        return _redis_store
    if _memory_store is None:
        _memory_store = InMemorySessionStore()
    return _memory_store


async def close_session_store() -> None:
    global _redis_store
    if _redis_store is not None:
        await _redis_store.close()
        _redis_store = None
