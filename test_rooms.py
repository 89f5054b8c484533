"""Tests for room definitions, chat rooms, sessions and the room catalog."""

import asyncio
from pathlib import Path

import pytest

from agentrooms.models.websocket import InboundCommand
from agentrooms.orchestration.rooms import ChatRoom, RoomCatalog, RoomDefinition
from agentrooms.orchestration.strategies import (
    KeywordTerminationStrategy,
    SequentialSelectionStrategy,
    TextDecisionSelectionStrategy,
    TextDecisionTerminationStrategy,
)
from agentrooms.utils.config import OrchestrationConfig
from agentrooms.utils.errors import ConfigurationError, UpstreamCompletionError
from conftest import FakeCompletionService

ROOMS_DIR = Path(__file__).parent / "rooms"

STANDUP_YAML = """
name: standup
emoji: "☕"
agents:
  Facilitator:
    instructions: Summarize.
  Engineer:
    emoji: "🛠️"
    instructions: List risks. Say DONE when finished.
    libraries: [handbook]
strategies:
  selection:
    type: sequential
  termination:
    type: keyword
    keywords: [DONE]
    agents: [Engineer]
    maximum-iterations: 4
"""


class Recorder:
    def __init__(self):
        self.replies = []

    async def __call__(self, payload):
        self.replies.append(payload)


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_copywriting_room_file_loads():
    definition = RoomDefinition.from_yaml_file(ROOMS_DIR / "copywriting.yaml")

    assert definition.name == "copywriting"
    assert [a.name for a in definition.agents] == ["CopyWriter", "ArtDirector"]
    assert definition.selection.preconditions == ["last message", "remove content"]
    assert definition.selection.filter_instruction is None
    assert definition.termination.description == "The ArtDirector has approved the copy."

    orchestrator = definition.build_orchestrator(FakeCompletionService(), OrchestrationConfig())
    assert isinstance(orchestrator.selection, TextDecisionSelectionStrategy)
    assert isinstance(orchestrator.termination, TextDecisionTerminationStrategy)
    assert orchestrator.iteration_limit == 99


def test_configured_reasoning_markers_reach_every_stage():
    definition = RoomDefinition.from_yaml_file(ROOMS_DIR / "copywriting.yaml")
    config = OrchestrationConfig(reasoning_start="<reasoning>", reasoning_end="</reasoning>")

    orchestrator = definition.build_orchestrator(FakeCompletionService(), config)

    for component in (orchestrator, orchestrator.selection, orchestrator.termination):
        assert (component.reasoning_start, component.reasoning_end) == ("<reasoning>", "</reasoning>")


def test_rule_based_room_definition(tmp_path):
    definition = RoomDefinition.from_yaml_file(_write(tmp_path, "standup.yaml", STANDUP_YAML))

    assert definition.agents[0].emoji == "🤖"
    assert definition.agents[1].emoji == "🛠️"

    orchestrator = definition.build_orchestrator(FakeCompletionService(), OrchestrationConfig(max_iterations=10))
    assert isinstance(orchestrator.selection, SequentialSelectionStrategy)
    assert isinstance(orchestrator.termination, KeywordTerminationStrategy)
    assert orchestrator.iteration_limit == 4


@pytest.mark.parametrize("text", [
    "name: empty\nagents: {}\n",
    "agents:\n  A:\n    instructions: hi\n",
    "name: x\nagents:\n  A:\n    emoji: x\n",
    "name: x\nagents:\n  A:\n    instructions: hi\nstrategies:\n  selection:\n    type: lottery\n",
    "- just\n- a list\n",
])
def test_invalid_room_definitions(tmp_path, text):
    with pytest.raises(ConfigurationError):
        RoomDefinition.from_yaml_file(_write(tmp_path, "bad.yaml", text))


def test_catalog_skips_invalid_files(tmp_path):
    _write(tmp_path, "standup.yml", STANDUP_YAML)
    _write(tmp_path, "broken.yaml", "name: [unclosed")
    _write(tmp_path, "notes.txt", "ignored")

    catalog = RoomCatalog.load(tmp_path, FakeCompletionService())

    assert catalog.names == ["standup"]
    listing = catalog.room_list("tx-1").to_dict()
    assert listing["userId"] == "system"
    assert listing["action"] == "rooms"
    assert listing["subAction"] == "room list"
    assert listing["rooms"][0]["agents"][1] == {"name": "Engineer", "emoji": "🛠️"}


def test_catalog_missing_directory_is_empty(tmp_path):
    catalog = RoomCatalog.load(tmp_path / "nope", FakeCompletionService())

    assert catalog.names == []


def _standup_room(completion):
    definition = RoomDefinition.from_dict({
        "name": "standup",
        "agents": {
            "Facilitator": {"instructions": "Summarize."},
            "Engineer": {"instructions": "List risks.", "emoji": "🛠️"},
        },
        "strategies": {
            "selection": {"type": "sequential"},
            "termination": {"type": "keyword", "keywords": ["DONE"], "maximum-iterations": 2},
        },
    })
    return ChatRoom(definition, definition.build_orchestrator(completion, OrchestrationConfig()))


@pytest.mark.asyncio
async def test_room_streams_replies_with_new_transaction_per_agent():
    room = _standup_room(FakeCompletionService(["Summary.", "Risk one. DONE"]))
    recorder = Recorder()

    await room.handle_command(
        InboundCommand(action="standup", user_id="u1", transaction_id="t0", content="Ship Friday"), recorder
    )

    replies = recorder.replies
    assert all(r["subAction"] == "chunk" for r in replies)
    assert all(r["userId"] == "u1" and r["action"] == "standup" for r in replies)

    transactions = []
    for reply in replies:
        if reply["transactionId"] not in transactions:
            transactions.append(reply["transactionId"])
    assert len(transactions) == 2
    assert "t0" not in transactions

    assert replies[-1]["agentName"] == "Engineer"
    assert replies[-1]["emoji"] == "🛠️"
    assert replies[-1]["content"] == "Risk one. DONE"
    assert replies[-1]["hints"]["terminate-decision"]["content"].startswith("True: ")
    assert [m.author for m in room.orchestrator.history] == ["User", "Facilitator", "Engineer"]


@pytest.mark.asyncio
async def test_room_defaults_to_deciding_before_selection():
    room = _standup_room(FakeCompletionService(["DONE"]))
    recorder = Recorder()

    await room.handle_command(InboundCommand(action="standup", content="hi"), recorder)

    first = recorder.replies[0]
    assert first["agentName"] == "Deciding..."
    assert first["emoji"] == "🤔"


@pytest.mark.asyncio
async def test_room_sends_single_error_reply_on_failure():
    failure = UpstreamCompletionError.from_exception(RuntimeError("model offline"), operation="test")
    room = _standup_room(FakeCompletionService([failure]))
    recorder = Recorder()

    await room.handle_command(InboundCommand(action="standup", user_id="u1", content="hi"), recorder)

    errors = [r for r in recorder.replies if r["subAction"] == "error"]
    assert len(errors) == 1
    assert "model offline" in errors[0]["content"]
    assert recorder.replies[-1] is errors[0]
    assert [m.author for m in room.orchestrator.history] == ["User"]


@pytest.mark.asyncio
async def test_reset_sub_action_clears_history():
    room = _standup_room(FakeCompletionService(["DONE"]))
    recorder = Recorder()
    await room.handle_command(InboundCommand(action="standup", content="hi"), recorder)

    await room.handle_command(InboundCommand(action="standup", sub_action="reset"), recorder)

    assert room.orchestrator.history == ()


@pytest.mark.asyncio
async def test_second_message_waits_for_running_loop():
    gate = asyncio.Event()

    class GatedCompletion(FakeCompletionService):
        async def stream(self, prompt, cancel_event=None):
            await gate.wait()
            async for chunk in super().stream(prompt, cancel_event):
                yield chunk

    room = _standup_room(GatedCompletion(["DONE"]))
    recorder = Recorder()

    first = asyncio.create_task(room.handle_command(InboundCommand(action="standup", content="one"), recorder))
    await asyncio.sleep(0)
    second = asyncio.create_task(room.handle_command(InboundCommand(action="standup", content="two"), recorder))
    await asyncio.sleep(0)

    assert room.is_busy
    assert [m.text for m in room.orchestrator.history] == ["one"]

    gate.set()
    await asyncio.gather(first, second)

    assert [m.text for m in room.orchestrator.history] == ["one", "DONE", "two", "DONE"]


@pytest.mark.asyncio
async def test_session_dispatch_routes_rooms_and_unknown(tmp_path):
    _write(tmp_path, "standup.yaml", STANDUP_YAML)
    catalog = RoomCatalog.load(tmp_path, FakeCompletionService(["DONE"]))
    session = catalog.new_session()
    recorder = Recorder()

    await session.dispatch(InboundCommand(action="rooms", sub_action="get", transaction_id="t1"), recorder)
    await session.dispatch(InboundCommand(action="lobby", user_id="u1"), recorder)

    assert recorder.replies[0]["action"] == "rooms"
    assert recorder.replies[0]["transactionId"] == "t1"
    assert recorder.replies[1]["action"] == "unknown"
    assert recorder.replies[1]["subAction"] == "error"


@pytest.mark.asyncio
async def test_sessions_do_not_share_history(tmp_path):
    _write(tmp_path, "standup.yaml", STANDUP_YAML)
    catalog = RoomCatalog.load(tmp_path, FakeCompletionService(["DONE"]))
    first, second = catalog.new_session(), catalog.new_session()

    await first.dispatch(InboundCommand(action="Standup", content="hello"), Recorder())

    assert len(first.room("standup").orchestrator.history) > 0
    assert second.room("standup").orchestrator.history == ()
    assert first.room("standup") is first.room("STANDUP")
