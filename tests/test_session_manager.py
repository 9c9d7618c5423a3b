"""Tests for the recording session state machine, on both store backends."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from fakes import FakeRedis
from src.errors import (
    InvalidInput,
    InvalidSessionState,
    SessionAlreadyActive,
    SessionNotFound,
)
from src.schemas.session import SessionState
from src.services.session_manager import (
    InMemorySessionStore,
    RedisSessionStore,
    VoiceSessionManager,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture(params=["memory", "redis"])
def manager(request):
    if request.param == "memory":
        return VoiceSessionManager(InMemorySessionStore())
    return VoiceSessionManager(RedisSessionStore(FakeRedis()))


# ── Lifecycle ────────────────────────────────────────────────────────


def test_full_lifecycle(manager):
    async def scenario():
        session = await manager.start("c1", "chief_complaint")
        assert session.state == SessionState.RECORDING

        stopped = await manager.stop(session.id, "Patient reports pain in 36.")
        assert stopped.state == SessionState.STOPPED
        assert stopped.stopped_at is not None

        processed = await manager.mark_processed(session.id, "created")
        assert processed.state == SessionState.PROCESSED
        assert processed.processing_outcome == "created"

        stored = await manager.get(session.id)
        assert stored.state == SessionState.PROCESSED
        assert stored.transcript == "Patient reports pain in 36."

    run(scenario())


def test_empty_transcript_is_allowed_on_stop(manager):
    async def scenario():
        session = await manager.start("c1", "history")
        stopped = await manager.stop(session.id)
        assert stopped.transcript == ""
        assert (await manager.get(session.id)).transcript == ""

    run(scenario())


def test_start_requires_both_ids(manager):
    with pytest.raises(InvalidInput):
        run(manager.start("c1", "  "))


# ── Exclusivity ──────────────────────────────────────────────────────


def test_concurrent_starts_yield_exactly_one_session(manager):
    async def scenario():
        return await asyncio.gather(
            manager.start("c1", "exam"),
            manager.start("c1", "exam"),
            return_exceptions=True,
        )

    results = run(scenario())
    sessions = [r for r in results if not isinstance(r, Exception)]
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(sessions) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], SessionAlreadyActive)
    assert errors[0].details["session_id"] == sessions[0].id


def test_other_sections_are_independent(manager):
    async def scenario():
        first = await manager.start("c1", "exam")
        second = await manager.start("c1", "history")
        third = await manager.start("c2", "exam")
        return {first.id, second.id, third.id}

    assert len(run(scenario())) == 3


def test_failed_start_frees_the_section(fake_redis):
    manager = VoiceSessionManager(RedisSessionStore(fake_redis))

    async def scenario():
        fake_redis.failing.add("hset")
        with pytest.raises(RedisConnectionError):
            await manager.start("c1", "exam")
        assert "intake:active:c1:exam" not in fake_redis.strings

        fake_redis.failing.clear()
        session = await manager.start("c1", "exam")
        assert fake_redis.strings["intake:active:c1:exam"] == session.id
        assert (await manager.get(session.id)).state == SessionState.RECORDING

    run(scenario())


def test_new_session_can_start_after_stop(manager):
    async def scenario():
        first = await manager.start("c1", "exam")
        await manager.stop(first.id, "done")
        second = await manager.start("c1", "exam")
        assert second.id != first.id
        assert second.state == SessionState.RECORDING

    run(scenario())


# ── Illegal transitions ──────────────────────────────────────────────


def test_double_stop_is_rejected_and_state_unchanged(manager):
    async def scenario():
        session = await manager.start("c1", "exam")
        await manager.stop(session.id, "first")
        with pytest.raises(InvalidSessionState):
            await manager.stop(session.id, "second")
        stored = await manager.get(session.id)
        assert stored.state == SessionState.STOPPED
        assert stored.transcript == "first"

    run(scenario())


def test_processing_before_stop_is_rejected(manager):
    async def scenario():
        session = await manager.start("c1", "exam")
        with pytest.raises(InvalidSessionState):
            await manager.mark_processed(session.id, "created")
        assert (await manager.get(session.id)).state == SessionState.RECORDING

    run(scenario())


def test_processed_is_terminal(manager):
    async def scenario():
        session = await manager.start("c1", "exam")
        await manager.stop(session.id, "x")
        await manager.mark_processed(session.id, "created")
        with pytest.raises(InvalidSessionState):
            await manager.mark_processed(session.id, "created")

    run(scenario())


def test_unknown_session(manager):
    with pytest.raises(SessionNotFound) as exc_info:
        run(manager.stop("missing", "x"))
    assert isinstance(exc_info.value, InvalidInput)
    assert exc_info.value.status_code == 404


# ── Queries ──────────────────────────────────────────────────────────


def test_list_stopped_only_returns_stopped_sessions(manager):
    async def scenario():
        recording = await manager.start("c1", "a")
        stopped = await manager.start("c1", "b")
        processed = await manager.start("c1", "c")
        await manager.stop(stopped.id, "b")
        await manager.stop(processed.id, "c")
        await manager.mark_processed(processed.id, "created")
        return recording, stopped, await manager.list_stopped()

    _, stopped, listed = run(scenario())
    assert [s.id for s in listed] == [stopped.id]


def test_redis_layout(fake_redis):
    async def scenario():
        manager = VoiceSessionManager(RedisSessionStore(fake_redis))
        session = await manager.start("c1", "exam")
        assert fake_redis.strings["intake:active:c1:exam"] == session.id
        await manager.stop(session.id, "text")
        assert "intake:active:c1:exam" not in fake_redis.strings
        assert fake_redis.sets["intake:sessions:stopped"] == {session.id}
        assert session.id not in fake_redis.sets["intake:sessions:recording"]
        assert not any(key.startswith("intake:lock:") for key in fake_redis.strings)

    run(scenario())


# ── Processing claims ────────────────────────────────────────────────


def test_processing_claim_is_exclusive_until_released(manager):
    async def scenario():
        session = await manager.start("c1", "exam")
        await manager.stop(session.id, "text")

        claimed = await manager.claim_for_processing(session.id)
        assert claimed.transcript == "text"
        with pytest.raises(InvalidSessionState) as exc_info:
            await manager.claim_for_processing(session.id)
        assert exc_info.value.details["state"] == "processing"

        await manager.release_processing(session.id)
        await manager.claim_for_processing(session.id)
        await manager.mark_processed(session.id, "created")
        with pytest.raises(InvalidSessionState):
            await manager.claim_for_processing(session.id)

    run(scenario())


def test_concurrent_claims_have_one_winner(manager):
    async def scenario():
        session = await manager.start("c1", "exam")
        await manager.stop(session.id, "text")
        return await asyncio.gather(
            *(manager.claim_for_processing(session.id) for _ in range(3)),
            return_exceptions=True,
        )

    results = run(scenario())
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert all(isinstance(r, InvalidSessionState) for r in results if isinstance(r, Exception))


def test_recording_session_cannot_be_claimed(manager):
    async def scenario():
        session = await manager.start("c1", "exam")
        with pytest.raises(InvalidSessionState):
            await manager.claim_for_processing(session.id)

    run(scenario())


def test_redis_processing_claim_is_cleared_when_processed(fake_redis):
    async def scenario():
        manager = VoiceSessionManager(RedisSessionStore(fake_redis))
        session = await manager.start("c1", "exam")
        await manager.stop(session.id, "text")
        await manager.claim_for_processing(session.id)
        assert f"intake:processing:{session.id}" in fake_redis.strings
        await manager.mark_processed(session.id, "created")
        assert f"intake:processing:{session.id}" not in fake_redis.strings

    run(scenario())
