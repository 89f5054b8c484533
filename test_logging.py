"""Tests for logging context propagation."""

import asyncio
import logging

import pytest

from agentrooms.utils.logging import ContextFilter, clear_context, get_context, set_context


def _record():
    return logging.LogRecord("agentrooms", logging.INFO, __file__, 1, "message", None, None)


def test_context_fields_are_added_to_records():
    clear_context()
    set_context(session="abc", room="copywriting")

    record = _record()
    ContextFilter().filter(record)

    assert record.session == "abc"
    assert record.room == "copywriting"
    clear_context()
    assert get_context() == {}


@pytest.mark.asyncio
async def test_concurrent_tasks_keep_separate_context():
    async def worker(session_id):
        set_context(session=session_id)
        await asyncio.sleep(0)
        return get_context()["session"]

    results = await asyncio.gather(worker("one"), worker("two"))

    assert results == ["one", "two"]
