"""Streaming orchestrator driving the agent turn loop."""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Optional, Tuple

from ..models.envelope import ProgressEnvelope, Stage
from ..models.message import AgentDescriptor, Message, USER_AUTHOR
from ..utils.completion import CompletionService
from ..utils.errors import ConfigurationError, InvalidStateError, NoAgentSelectedError
from ..utils.reasoning import REASONING_END, REASONING_START, split_reasoning
from .conversation import ConversationStore
from .strategies import SelectionStrategy, TerminationStrategy

logger = logging.getLogger(__name__)


class OrchestratorState(Enum):
    """Lifecycle of one orchestrator."""

    IDLE = "idle"
    SELECTING_AGENT = "selecting_agent"
    STREAMING_RESPONSE = "streaming_response"
    EVALUATING_TERMINATION = "evaluating_termination"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class StreamingOrchestrator:
    """
    Runs the select, speak, evaluate loop and streams its progress.

    Each iteration gets a fresh ProgressEnvelope. Every strategy yield and
    every completion chunk produces an emitted snapshot, so observers see
    the stages of an iteration accumulate in order:
    select-history, select-content, select-decision, agent,
    terminate-history, terminate-content, terminate-decision.

    An agent's output is committed to the history only after its stream
    ended normally. The loop stops when the termination strategy says so
    or after ``max_iterations`` iterations.

    Attributes:
        store: Conversation history and agent roster
        selection: Strategy choosing the next speaker
        termination: Strategy deciding when to stop
        completion: Default completion service for agents without their own
        state: Current OrchestratorState
    """

    def __init__(
        self,
        store: ConversationStore,
        selection: SelectionStrategy,
        termination: TerminationStrategy,
        completion: Optional[CompletionService] = None,
        max_iterations: Optional[int] = None,
        reasoning_start: str = REASONING_START,
        reasoning_end: str = REASONING_END,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: ConversationStore with an initialized roster
            selection: Selection strategy
            termination: Termination strategy
            completion: Completion service used by agents that have none
            max_iterations: Overrides the termination strategy's cap
            reasoning_start: Opening marker of reasoning spans
            reasoning_end: Closing marker of reasoning spans
        """
        self.store = store
        self.selection = selection
        self.termination = termination
        self.completion = completion
        self.max_iterations = max_iterations
        self.reasoning_start = reasoning_start
        self.reasoning_end = reasoning_end
        self.state = OrchestratorState.IDLE

    @property
    def iteration_limit(self) -> int:
        if self.max_iterations is not None:
            return self.max_iterations
        return self.termination.maximum_iterations

    @property
    def history(self) -> Tuple[Message, ...]:
        return self.store.history

    def agents(self) -> Tuple[AgentDescriptor, ...]:
        return self.store.agents()

    def add_user_message(self, text: str) -> Message:
        """Append a message authored by the user."""
        return self.store.append_message(USER_AUTHOR, text)

    def reset(self):
        """Clear the history and return to IDLE."""
        self.store.reset()
        self.state = OrchestratorState.IDLE

    def build_agent_prompt(self, agent: AgentDescriptor) -> str:
        """
        Build the generation prompt for ``agent``.

        Every message becomes an ``author: text`` line, followed by the
        agent's instructions.
        """
        lines = "\n".join(f"{message.author}: {message.text}" for message in self.store.history)
        return f"{lines}\n\nInstructions: {agent.instructions}"

    def _completion_for(self, agent: AgentDescriptor) -> CompletionService:
        completion = agent.completion or self.completion
        if completion is None:
            raise ConfigurationError.invalid(agent.name, "agent has no completion service")
        return completion

    def _is_cancelled(self, cancel_event: Optional[asyncio.Event]) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            self.state = OrchestratorState.CANCELLED
            logger.info("Turn loop cancelled")
            return True
        return False

    async def invoke_stream(
        self,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[ProgressEnvelope]:
        """
        Run the turn loop, yielding a snapshot after every step.

        Args:
            cancel_event: Stops the loop at the next suspension point once set

        Yields:
            ProgressEnvelope snapshots

        Raises:
            InvalidStateError: If the roster is empty
            NoAgentSelectedError: If selection ends without a speaker
            UpstreamCompletionError: If a completion call fails
        """
        agents = self.store.agents()
        if not agents:
            raise InvalidStateError.roster_not_initialized("start the conversation")

        limit = self.iteration_limit
        logger.info(f"Starting turn loop with {len(agents)} agents, at most {limit} iterations")
        envelope = ProgressEnvelope()

        try:
            for iteration in range(1, limit + 1):
                envelope = ProgressEnvelope()

                # Selection
                self.state = OrchestratorState.SELECTING_AGENT
                speaker: Optional[AgentDescriptor] = None
                is_new_agent = True
                async for candidate in self.selection.select_next(
                    envelope, agents, self.store.history, cancel_event
                ):
                    if self._is_cancelled(cancel_event):
                        return
                    speaker = candidate
                    envelope.is_new_agent = is_new_agent
                    yield envelope.snapshot()
                    is_new_agent = False

                if self._is_cancelled(cancel_event):
                    return
                if speaker is None:
                    raise NoAgentSelectedError.for_strategy(type(self.selection).__name__)

                envelope.is_new_agent = is_new_agent
                envelope.agent_name = speaker.name
                yield envelope.snapshot()
                envelope.is_new_agent = False

                # Generation
                self.state = OrchestratorState.STREAMING_RESPONSE
                prompt = self.build_agent_prompt(speaker)
                buffer = ""
                answer = ""
                async for chunk in self._completion_for(speaker).stream(prompt, cancel_event=cancel_event):
                    if self._is_cancelled(cancel_event):
                        return
                    buffer += chunk
                    answer, reasoning = split_reasoning(buffer, self.reasoning_start, self.reasoning_end)
                    envelope.record(Stage.AGENT, prompt, answer, reasoning)
                    yield envelope.snapshot()

                if self._is_cancelled(cancel_event):
                    return

                self.store.append_message(speaker.name, answer.strip())
                envelope.is_message_done = True
                yield envelope.snapshot()

                # Termination
                self.state = OrchestratorState.EVALUATING_TERMINATION
                should_stop = False
                async for decision in self.termination.should_terminate(
                    envelope, speaker, self.store.history, cancel_event
                ):
                    if self._is_cancelled(cancel_event):
                        return
                    should_stop = decision
                    yield envelope.snapshot()

                if self._is_cancelled(cancel_event):
                    return

                if should_stop:
                    logger.info(f"Conversation terminated after iteration {iteration} ({speaker.name})")
                    break
            else:
                logger.info(f"Iteration limit of {limit} reached")

            self.state = OrchestratorState.COMPLETE
            envelope.is_chat_complete = True
            yield envelope.snapshot()

        except asyncio.CancelledError:
            self.state = OrchestratorState.CANCELLED
            raise
        except Exception as e:
            self.state = OrchestratorState.IDLE
            logger.error(f"Turn loop failed: {e}")
            raise
