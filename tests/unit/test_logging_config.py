"""
Unit tests for the invocation scope used in structured logs.
"""

import asyncio

import pytest

from switchboard.logging_config import current_invocation_id, invocation_scope, stamp_invocation_id


class TestInvocationScope:

    def test_processor_outside_scope_leaves_event_alone(self):
        assert stamp_invocation_id(None, "info", {"event": "x"}) == {"event": "x"}

    def test_processor_stamps_active_id(self):
        with invocation_scope("abc123"):
            event = stamp_invocation_id(None, "info", {"event": "x"})

        assert event == {"event": "x", "invocation_id": "abc123"}
        assert current_invocation_id() is None

    def test_nested_scopes_restore_outer_id(self):
        with invocation_scope() as outer:
            with invocation_scope("inner"):
                assert current_invocation_id() == "inner"
            assert current_invocation_id() == outer

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_ids(self):
        async def worker(name):
            with invocation_scope(name):
                await asyncio.sleep(0.01)
                return current_invocation_id()

        assert await asyncio.gather(worker("a"), worker("b")) == ["a", "b"]
