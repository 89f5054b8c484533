"""Shared fixtures and fake completion services for the test suite."""

import asyncio
from typing import List, Optional, Sequence, Tuple, Union

import pytest

from agentrooms.models.message import AgentDescriptor
from agentrooms.orchestration.conversation import ConversationStore
from agentrooms.utils.completion import CompletionService

Script = Union[str, Sequence[str], Exception]


def _chunks(response: Script, chunk_size: int) -> List[str]:
    if isinstance(response, str):
        if not response:
            return []
        return [response[i:i + chunk_size] for i in range(0, len(response), chunk_size)]
    return list(response)


class FakeCompletionService(CompletionService):
    """
    Completion service replaying scripted responses in order.

    A script entry is a full response (split into ``chunk_size`` pieces),
    an explicit list of chunks, or an exception to raise. The last entry
    is repeated once the script runs out.
    """

    def __init__(self, responses: Sequence[Script] = ("",), chunk_size: int = 8, on_chunk=None):
        self.responses = list(responses)
        self.chunk_size = chunk_size
        self.on_chunk = on_chunk
        self.prompts: List[str] = []

    def _next_response(self) -> Script:
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def stream(self, prompt: str, cancel_event: Optional[asyncio.Event] = None):
        self.prompts.append(prompt)
        response = self._next_response()
        if isinstance(response, Exception):
            raise response

        for index, chunk in enumerate(_chunks(response, self.chunk_size)):
            if cancel_event is not None and cancel_event.is_set():
                return
            await asyncio.sleep(0)
            yield chunk
            if self.on_chunk is not None:
                self.on_chunk(prompt, index)


class RoutingCompletionService(CompletionService):
    """
    Completion service choosing a FakeCompletionService by prompt content.

    Routes are checked in order; the first marker found in the prompt wins.
    """

    def __init__(self, routes: Sequence[Tuple[str, FakeCompletionService]]):
        self.routes = list(routes)
        self.prompts: List[str] = []

    async def stream(self, prompt: str, cancel_event: Optional[asyncio.Event] = None):
        self.prompts.append(prompt)
        for marker, service in self.routes:
            if marker in prompt:
                async for chunk in service.stream(prompt, cancel_event=cancel_event):
                    yield chunk
                return
        raise AssertionError(f"No scripted response for prompt: {prompt[:80]!r}")


SELECTION_MARKER = "Agent Selection Criteria"
TERMINATION_MARKER = "Evaluate the following statement"
AGENT_MARKER = "\n\nInstructions: "


@pytest.fixture
def agents() -> Tuple[AgentDescriptor, AgentDescriptor]:
    return (
        AgentDescriptor(name="CopyWriter", instructions="Write one slogan.", emoji="📝"),
        AgentDescriptor(name="ArtDirector", instructions="Approve or refine the slogan.", emoji="🎨"),
    )


@pytest.fixture
def store(agents) -> ConversationStore:
    store = ConversationStore(room_name="test")
    store.init_roster(agents)
    return store
