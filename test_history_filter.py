"""Tests for the history filter."""

import json

import pytest

from agentrooms.models.message import Message
from agentrooms.orchestration.history_filter import build_snapshot, filter_history
from agentrooms.utils.errors import UpstreamCompletionError
from conftest import FakeCompletionService


def _history():
    return [
        Message(author="User", text='Write a "catchy" slogan'),
        Message(author="CopyWriter", text="<think>short is best</think>Go far."),
        Message(author="ArtDirector", text="Approved."),
    ]


async def _collect(*args, **kwargs):
    return [item async for item in filter_history(*args, **kwargs)]


def test_snapshot_has_order_author_and_text_without_reasoning():
    items = json.loads(build_snapshot(_history()))

    assert items[0] == {"order": 1, "author": "User", "text": 'Write a "catchy" slogan'}
    assert items[1] == {"order": 2, "author": "CopyWriter", "text": "Go far."}
    assert [item["order"] for item in items] == [1, 2, 3]


@pytest.mark.asyncio
async def test_last_message_and_remove_content_short_circuit():
    completion = FakeCompletionService(["should not be used"])

    results = await _collect(["last message", "remove content"], None, _history(), completion)

    assert len(results) == 1
    prompt, content, reason = results[0]
    assert prompt == "code"
    assert json.loads(content) == [{"order": 1, "author": "ArtDirector"}]
    assert reason == 'applied pre-condition: ["last message", "remove content"]'
    assert completion.prompts == []


@pytest.mark.asyncio
async def test_preconditions_match_case_insensitively():
    results = await _collect(["Last Message"], None, _history(), FakeCompletionService())

    assert json.loads(results[0].content) == [{"order": 1, "author": "ArtDirector", "text": "Approved."}]


@pytest.mark.asyncio
async def test_last_message_on_empty_history():
    results = await _collect(["last message"], None, [], FakeCompletionService())

    assert results[0].content == "[]"


@pytest.mark.asyncio
async def test_no_preconditions_and_no_instruction_asks_the_model():
    completion = FakeCompletionService(['[{"order": 3, "author": "ArtDirector", "text": "Approved."}]'])

    results = await _collect(None, None, _history(), completion)

    assert len(completion.prompts) == 1
    prompt = completion.prompts[0]
    assert '"author": "CopyWriter"' in prompt
    assert "short is best" not in prompt
    assert results[-1].prompt == prompt
    assert json.loads(results[-1].content) == [{"order": 3, "author": "ArtDirector", "text": "Approved."}]


@pytest.mark.asyncio
async def test_empty_preconditions_without_instruction_ask_the_model():
    completion = FakeCompletionService(["[]"])

    await _collect([], "", [Message(author="User", text="hi")], completion)

    assert len(completion.prompts) == 1


@pytest.mark.asyncio
async def test_custom_reasoning_markers_are_split_and_removed_from_snapshot():
    history = [Message(author="CopyWriter", text="[r]draft idea[/r]Go far.")]
    completion = FakeCompletionService(['[r]keep all[/r][{"order": 1, "author": "CopyWriter"}]'])

    results = await _collect(
        [], "Keep everything.", history, completion, reasoning_start="[r]", reasoning_end="[/r]"
    )

    assert "draft idea" not in completion.prompts[0]
    assert '"text": "Go far."' in completion.prompts[0]
    assert results[-1].content == '[{"order": 1, "author": "CopyWriter"}]'
    assert results[-1].reason == "[r]keep all[/r]"


@pytest.mark.asyncio
async def test_filter_instruction_streams_model_snapshots():
    response = '<think>only approvals</think>[{"order": 3, "author": "ArtDirector"}]'
    completion = FakeCompletionService([response], chunk_size=10)

    results = await _collect(
        ["remove content"], "Keep only messages from the ArtDirector.", _history(), completion
    )

    assert len(results) == len(range(0, len(response), 10))
    assert len(completion.prompts) == 1
    prompt = completion.prompts[0]
    assert "Keep only messages from the ArtDirector." in prompt
    assert '"author": "CopyWriter"' in prompt
    assert '"text"' not in prompt

    final = results[-1]
    assert final.prompt == prompt
    assert final.content == '[{"order": 3, "author": "ArtDirector"}]'
    assert final.reason == "<think>only approvals</think>"


@pytest.mark.asyncio
async def test_completion_errors_propagate():
    failure = UpstreamCompletionError.from_exception(RuntimeError("boom"), operation="test")
    completion = FakeCompletionService([failure])

    with pytest.raises(UpstreamCompletionError):
        await _collect([], "filter", _history(), completion)
