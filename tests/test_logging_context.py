"""Tests for session correlation ids on log records."""

import asyncio
import logging

import pytest

from src.logging_context import (
    NO_SESSION,
    SessionIdFilter,
    get_session_id,
    get_session_logger,
    session_scope,
)


class TestSessionScope:
    def test_default_when_unbound(self):
        assert get_session_id() == NO_SESSION

    def test_scope_binds_and_restores(self):
        with session_scope("web-1"):
            assert get_session_id() == "web-1"
            with session_scope("web-2"):
                assert get_session_id() == "web-2"
            assert get_session_id() == "web-1"
        assert get_session_id() == NO_SESSION

    def test_restored_after_error(self):
        with pytest.raises(RuntimeError):
            with session_scope("web-1"):
                raise RuntimeError("boom")
        assert get_session_id() == NO_SESSION

    @pytest.mark.asyncio
    async def test_concurrent_tasks_are_isolated(self):
        seen = {}

        async def turn(session_id):
            with session_scope(session_id):
                await asyncio.sleep(0)
                seen[session_id] = get_session_id()

        await asyncio.gather(turn("web-1"), turn("web-2"))
        assert seen == {"web-1": "web-1", "web-2": "web-2"}


class TestSessionLogger:
    def test_filter_attached_once(self):
        logger = get_session_logger("tests.session.once")
        get_session_logger("tests.session.once")
        assert sum(isinstance(f, SessionIdFilter) for f in logger.filters) == 1

    def test_records_carry_session_id(self, caplog):
        logger = get_session_logger("tests.session.records")
        with caplog.at_level(logging.INFO, logger="tests.session.records"):
            with session_scope("web-9"):
                logger.info("inside")
            logger.info("outside")
        assert [r.session_id for r in caplog.records] == ["web-9", NO_SESSION]

    @pytest.mark.asyncio
    async def test_engine_turns_are_tagged(self, started_service, caplog):
        await started_service.handle_message("web-7", "I'd like to book a consultation")
        await started_service.handle_message("web-7", "Jane Cooper")
        with caplog.at_level(logging.INFO, logger="src.conversation.engine"):
            await started_service.handle_message("web-7", "not sure")

        engine_records = [r for r in caplog.records if r.name == "src.conversation.engine"]
        assert engine_records
        assert all(r.session_id == "web-7" for r in engine_records)
        assert get_session_id() == NO_SESSION
