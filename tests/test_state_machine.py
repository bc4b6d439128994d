"""Tests for per-session conversation state and the session registry."""

import asyncio

import pytest

from src.conversation.state_machine import ConversationState, SessionRegistry
from src.schemas.conversation_schema import BookingStep, Channel
from tests.conftest import FIXED_NOW


@pytest.fixture
def registry(clock):
    return SessionRegistry(ttl_seconds=3600, clock=clock)


class TestConversationState:
    @pytest.fixture
    def state(self):
        return ConversationState(session_id="s1", created_at=FIXED_NOW, updated_at=FIXED_NOW)

    def test_starts_at_name(self, state):
        assert state.step == BookingStep.NAME
        assert state.data == {}
        assert not state.is_complete

    def test_move_records_history(self, state):
        state.move_to(BookingStep.EMAIL, FIXED_NOW)
        state.move_to(BookingStep.ORGANIZATION, FIXED_NOW)
        assert state.get_step_trace() == ["email", "organization"]

    def test_move_to_same_step_is_noop(self, state):
        state.move_to(BookingStep.NAME, FIXED_NOW)
        assert state.history == []

    def test_record_attempt_counts_per_field(self, state):
        assert state.record_attempt("email") == 1
        assert state.record_attempt("email") == 2
        assert state.record_attempt("name") == 1

    def test_expiry(self, state, clock):
        clock.advance(3600)
        assert not state.is_expired(clock.now, 3600)
        clock.advance(1)
        assert state.is_expired(clock.now, 3600)

    def test_touch_resets_expiry(self, state, clock):
        clock.advance(3000)
        state.touch(clock.now)
        clock.advance(3000)
        assert not state.is_expired(clock.now, 3600)


class TestSessionRegistry:
    def test_created_lazily(self, registry):
        state, created = registry.get_or_create("web-1", Channel.VOICE)
        assert created
        assert state.channel == Channel.VOICE
        assert state.created_at == FIXED_NOW
        assert state.get_step_trace() == ["name"]
        assert "web-1" in registry

    def test_second_lookup_returns_same_state(self, registry):
        first, _ = registry.get_or_create("web-1")
        second, created = registry.get_or_create("web-1")
        assert second is first
        assert not created
        assert len(registry) == 1

    def test_channel_from_string(self, registry):
        state, _ = registry.get_or_create("web-1", "voice")
        assert state.channel == Channel.VOICE

    def test_get_unknown(self, registry):
        assert registry.get("missing") is None

    def test_discard(self, registry):
        registry.get_or_create("web-1")
        assert registry.discard("web-1")
        assert not registry.discard("web-1")
        assert "web-1" not in registry

    def test_active_excludes_expired(self, registry, clock):
        registry.get_or_create("old")
        clock.advance(3000)
        registry.get_or_create("fresh", Channel.VOICE)
        clock.advance(1000)

        active = registry.active()
        assert [s.session_id for s in active] == ["fresh"]
        assert "old" in registry

    def test_lock_is_per_session(self, registry):
        assert registry.lock_for("a") is registry.lock_for("a")
        assert registry.lock_for("a") is not registry.lock_for("b")


class TestReaping:
    def test_reaps_idle_sessions(self, registry, clock):
        registry.get_or_create("old")
        clock.advance(1800)
        registry.get_or_create("fresh")
        clock.advance(1801)

        assert registry.reap_expired() == ["old"]
        assert "old" not in registry
        assert "fresh" in registry

    def test_nothing_to_reap(self, registry):
        registry.get_or_create("web-1")
        assert registry.reap_expired() == []

    def test_recently_touched_session_survives(self, registry, clock):
        state, _ = registry.get_or_create("web-1")
        clock.advance(3000)
        state.touch(clock.now)
        clock.advance(3000)
        assert registry.reap_expired() == []

    @pytest.mark.asyncio
    async def test_held_lock_survives_reaping(self, registry, clock):
        registry.get_or_create("web-1")
        async with registry.hold("web-1"):
            lock = registry.lock_for("web-1")
            clock.advance(7200)
            registry.reap_expired()
            assert registry.lock_for("web-1") is lock
        # the session itself is gone
        assert "web-1" not in registry

    @pytest.mark.asyncio
    async def test_lock_handed_to_waiter_survives_reaping(self, registry, clock):
        registry.get_or_create("web-1")
        lock = registry.lock_for("web-1")
        await lock.acquire()
        entered = []

        async def waiting_turn():
            async with registry.hold("web-1"):
                entered.append(registry.lock_for("web-1"))

        waiter = asyncio.create_task(waiting_turn())
        await asyncio.sleep(0)
        lock.release()
        assert not lock.locked()

        # Another session's turn reaps before the waiter resumes.
        clock.advance(7200)
        assert registry.reap_expired() == ["web-1"]
        assert registry.lock_for("web-1") is lock

        await waiter
        assert entered == [lock]

    @pytest.mark.asyncio
    async def test_lock_dropped_after_last_turn_for_gone_session(self, registry):
        async with registry.hold("web-1"):
            lock = registry.lock_for("web-1")
        assert registry.lock_for("web-1") is not lock

    @pytest.mark.asyncio
    async def test_lock_kept_while_session_active(self, registry):
        registry.get_or_create("web-1")
        async with registry.hold("web-1"):
            lock = registry.lock_for("web-1")
        assert registry.lock_for("web-1") is lock


class TestConcurrentTurns:
    @pytest.mark.asyncio
    async def test_same_session_turns_are_serialized(self, registry):
        order = []

        async def turn(label):
            async with registry.lock_for("web-1"):
                order.append(f"{label}-start")
                await asyncio.sleep(0)
                order.append(f"{label}-end")

        await asyncio.gather(turn("a"), turn("b"))
        assert order == ["a-start", "a-end", "b-start", "b-end"]
