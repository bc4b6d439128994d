"""
Per-session conversation state and the registry that owns it.

A conversation moves through the steps name -> email -> organization ->
inquiry -> start_time -> duration -> confirmation. The current step is
always the first required field still missing, or ``confirmation`` once
every field is filled. Step changes are recorded in the state history.

Usage:
    sessions = SessionRegistry(ttl_seconds=3600)
    state, created = sessions.get_or_create("web-abc123")
    async with sessions.hold("web-abc123"):
        ...
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Optional

from src.schemas.conversation_schema import BookingStep, Channel
from src.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class StepEntry:
    """Recorded history entry for a step visit."""
    step: BookingStep
    entered_at: datetime


@dataclass
class ConversationState:
    """Slot-filling progress for one session."""

    session_id: str
    created_at: datetime
    updated_at: datetime
    channel: Channel = Channel.CHAT
    step: BookingStep = BookingStep.NAME
    data: dict[str, Any] = field(default_factory=dict)
    is_complete: bool = False
    attempts: dict[str, int] = field(default_factory=dict)
    history: list[StepEntry] = field(default_factory=list)

    def move_to(self, step: BookingStep, now: datetime) -> None:
        if step == self.step:
            return
        logger.debug(
            "Session %s step: %s -> %s", self.session_id, self.step.value, step.value
        )
        self.step = step
        self.history.append(StepEntry(step=step, entered_at=now))

    def touch(self, now: datetime) -> None:
        self.updated_at = now

    def record_attempt(self, field_name: str) -> int:
        self.attempts[field_name] = self.attempts.get(field_name, 0) + 1
        return self.attempts[field_name]

    def is_expired(self, now: datetime, ttl_seconds: float) -> bool:
        return now - self.updated_at > timedelta(seconds=ttl_seconds)

    def get_step_trace(self) -> list[str]:
        """Ordered list of step names visited."""
        return [entry.step.value for entry in self.history]


class SessionRegistry:
    """
    Owns every active conversation state and its per-session lock.

    Turns for the same session are serialized by running inside ``hold``;
    different sessions proceed concurrently. A lock is only dropped once no
    turn holds it or waits for it, so a waiter never ends up on a lock that
    a later turn no longer shares.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._states: dict[str, ConversationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._states

    def get(self, session_id: str) -> Optional[ConversationState]:
        return self._states.get(session_id)

    def get_or_create(
        self,
        session_id: str,
        channel: Channel = Channel.CHAT,
        now: Optional[datetime] = None,
    ) -> tuple[ConversationState, bool]:
        """Return the session's state, creating it lazily on first use."""
        state = self._states.get(session_id)
        if state is not None:
            return state, False
        now = now or self._clock()
        state = ConversationState(
            session_id=session_id,
            channel=Channel(channel),
            created_at=now,
            updated_at=now,
            history=[StepEntry(step=BookingStep.NAME, entered_at=now)],
        )
        self._states[session_id] = state
        logger.info("Booking conversation started for session %s (%s)", session_id, state.channel.value)
        return state, True

    def active(self, now: Optional[datetime] = None) -> list[ConversationState]:
        """Unexpired conversations, oldest first."""
        now = now or self._clock()
        states = [s for s in self._states.values() if not s.is_expired(now, self.ttl_seconds)]
        return sorted(states, key=lambda s: s.created_at)

    def discard(self, session_id: str) -> bool:
        """Destroy a session's state. Returns False when there was none."""
        return self._states.pop(session_id, None) is not None

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        """Run the enclosed turn with exclusive access to ``session_id``."""
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with self.lock_for(session_id):
                yield
        finally:
            remaining = self._lock_users[session_id] - 1
            if remaining:
                self._lock_users[session_id] = remaining
            else:
                del self._lock_users[session_id]
                if session_id not in self._states:
                    self._locks.pop(session_id, None)

    def _drop_idle_locks(self) -> None:
        idle = [
            sid for sid, lock in self._locks.items()
            if sid not in self._states and sid not in self._lock_users and not lock.locked()
        ]
        for sid in idle:
            del self._locks[sid]

    def reap_expired(self, now: Optional[datetime] = None) -> list[str]:
        """Drop states idle longer than the TTL; returns the reaped session ids."""
        now = now or self._clock()
        expired = [
            sid for sid, state in self._states.items()
            if state.is_expired(now, self.ttl_seconds)
        ]
        for sid in expired:
            del self._states[sid]
        self._drop_idle_locks()
        if expired:
            logger.info("Reaped %d expired booking session(s)", len(expired))
        return expired
