"""Selection and termination strategies for multi-agent chat rooms."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Sequence

from ..models.envelope import ProgressEnvelope, Stage
from ..models.message import AgentDescriptor, Message, USER_AUTHOR
from ..utils.completion import CompletionService
from ..utils.decision_parser import DecisionParser
from ..utils.reasoning import REASONING_END, REASONING_START, split_reasoning
from .history_filter import CODE_PROMPT, filter_history

logger = logging.getLogger(__name__)

DEFAULT_MAXIMUM_ITERATIONS = 99


def _cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


async def stream_decision(
    prompt: str,
    completion: CompletionService,
    cancel_event: Optional[asyncio.Event] = None,
    reasoning_start: str = REASONING_START,
    reasoning_end: str = REASONING_END,
) -> AsyncIterator[tuple]:
    """
    Stream a decision prompt, yielding ``(answer, reasoning)`` per chunk.

    The accumulated buffer is re-split on every chunk so the answer never
    contains a reasoning span.
    """
    buffer = ""
    async for chunk in completion.stream(prompt, cancel_event=cancel_event):
        if _cancelled(cancel_event):
            return
        buffer += chunk
        yield split_reasoning(buffer, reasoning_start, reasoning_end)


class SelectionStrategy(ABC):
    """
    Decides which agent speaks next.

    ``select_next`` is a lazy sequence: intermediate values are None and
    exist only so progress can be flushed; the last value is the speaker.
    """

    def __init__(self, maximum_iterations: int = DEFAULT_MAXIMUM_ITERATIONS):
        self.maximum_iterations = maximum_iterations

    @abstractmethod
    def select_next(
        self,
        envelope: ProgressEnvelope,
        agents: Sequence[AgentDescriptor],
        history: Sequence[Message],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Optional[AgentDescriptor]]:
        """Stream selection progress, ending with the chosen agent."""


class TerminationStrategy(ABC):
    """
    Decides whether the conversation should stop after an agent's turn.

    ``should_terminate`` yields False for intermediate progress; the last
    value is authoritative.
    """

    def __init__(self, maximum_iterations: int = DEFAULT_MAXIMUM_ITERATIONS):
        self.maximum_iterations = maximum_iterations

    @abstractmethod
    def should_terminate(
        self,
        envelope: ProgressEnvelope,
        agent: AgentDescriptor,
        history: Sequence[Message],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[bool]:
        """Stream termination progress, ending with the decision."""


def _resolve_agent(agents: Sequence[AgentDescriptor], name: Optional[str]) -> Optional[AgentDescriptor]:
    if not agents:
        return None
    if name:
        wanted = name.strip().lower()
        for agent in agents:
            if agent.name.lower() == wanted:
                return agent
        logger.warning(f"Selected agent '{name}' is not in the roster; falling back to {agents[0].name}")
    return agents[0]


class TextDecisionSelectionStrategy(SelectionStrategy):
    """
    Selection by asking a model to pick the next agent.

    The history is filtered first (stage ``select-history``), then a
    decision prompt with the selection criteria is streamed (stage
    ``select-content``). The final answer is parsed for ``nextAgent`` and
    ``rationale``; an unknown or missing name falls back to the first agent
    of the roster so a turn always gets a speaker.
    """

    def __init__(
        self,
        completion: CompletionService,
        description: str,
        preconditions: Optional[List[str]] = None,
        filter_instruction: Optional[str] = None,
        maximum_iterations: int = DEFAULT_MAXIMUM_ITERATIONS,
        reasoning_start: str = REASONING_START,
        reasoning_end: str = REASONING_END,
    ):
        super().__init__(maximum_iterations)
        self.completion = completion
        self.description = description
        self.preconditions = list(preconditions or [])
        self.filter_instruction = filter_instruction
        self.reasoning_start = reasoning_start
        self.reasoning_end = reasoning_end

    def build_prompt(self, filtered_history: str) -> str:
        return (
            "History:\n"
            f"{filtered_history}\n\n"
            "Agent Selection Criteria:\n"
            f"{self.description}\n\n"
            "Based on the above, please return a JSON object with two properties:\n"
            '- "rationale": An explanation of your decision.\n'
            '- "nextAgent": The name of the agent to respond next.\n\n'
            "Example Output:\n"
            "{\n"
            '    "rationale": "The last message was from User, so according to the rules, '
            'the next agent should be CopyWriter.",\n'
            '    "nextAgent": "CopyWriter"\n'
            "}\n\n"
            "Return only the JSON response without any additional commentary."
        )

    async def select_next(
        self,
        envelope: ProgressEnvelope,
        agents: Sequence[AgentDescriptor],
        history: Sequence[Message],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Optional[AgentDescriptor]]:
        filtered_history = ""
        async for prompt, content, reason in filter_history(
            self.preconditions,
            self.filter_instruction,
            history,
            self.completion,
            cancel_event,
            self.reasoning_start,
            self.reasoning_end,
        ):
            envelope.record(Stage.SELECT_HISTORY, prompt, content, reason)
            filtered_history = content
            yield None

        if _cancelled(cancel_event):
            return

        prompt = self.build_prompt(filtered_history)
        decision = ""
        async for answer, reasoning in stream_decision(
            prompt, self.completion, cancel_event, self.reasoning_start, self.reasoning_end
        ):
            envelope.record(Stage.SELECT_CONTENT, prompt, answer, reasoning)
            decision = answer
            yield None

        if _cancelled(cancel_event):
            return

        parsed = DecisionParser.extract_selection(decision)
        selected = _resolve_agent(agents, parsed.next_agent)

        envelope.record(Stage.SELECT_DECISION, decision, parsed.rationale, CODE_PROMPT)
        logger.info(f"Selected {selected.name if selected else 'no agent'}: {parsed.rationale[:200]}")
        yield selected


class TextDecisionTerminationStrategy(TerminationStrategy):
    """
    Termination by asking a model to evaluate a condition.

    The history is filtered first (stage ``terminate-history``), then the
    condition prompt is streamed (stage ``terminate-content``). The final
    answer is parsed for ``reason`` and ``shouldTerminate``; anything that
    cannot be parsed counts as "keep going".
    """

    def __init__(
        self,
        completion: CompletionService,
        description: str,
        preconditions: Optional[List[str]] = None,
        filter_instruction: Optional[str] = None,
        maximum_iterations: int = DEFAULT_MAXIMUM_ITERATIONS,
        reasoning_start: str = REASONING_START,
        reasoning_end: str = REASONING_END,
    ):
        super().__init__(maximum_iterations)
        self.completion = completion
        self.description = description
        self.preconditions = list(preconditions or [])
        self.filter_instruction = filter_instruction
        self.reasoning_start = reasoning_start
        self.reasoning_end = reasoning_end

    def build_prompt(self, filtered_history: str) -> str:
        return (
            "You have been provided with a JSON array of messages.\n\n"
            "Instructions:\n"
            "1. Evaluate the following statement based on the provided messages and description:\n"
            f'"{self.description}"\n\n'
            "2. Return your answer as a JSON object with two properties:\n"
            '   - "reason": A string explaining why the statement is considered true or false.\n'
            '   - "shouldTerminate": A boolean value (true if the termination condition is met, '
            "false otherwise).\n\n"
            "These are the messages you need to evaluate:\n"
            "--------------------------------------------------\n"
            f"{filtered_history}\n"
            "--------------------------------------------------\n\n"
            "Example Output:\n"
            "{\n"
            '    "reason": "The messages do not include any reference to an ArtDirector approving '
            'the copy, so the statement is false.",\n'
            '    "shouldTerminate": false\n'
            "}\n\n"
            "Return only the JSON response without any additional commentary."
        )

    async def should_terminate(
        self,
        envelope: ProgressEnvelope,
        agent: AgentDescriptor,
        history: Sequence[Message],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[bool]:
        filtered_history = ""
        async for prompt, content, reason in filter_history(
            self.preconditions,
            self.filter_instruction,
            history,
            self.completion,
            cancel_event,
            self.reasoning_start,
            self.reasoning_end,
        ):
            envelope.record(Stage.TERMINATE_HISTORY, prompt, content, reason)
            filtered_history = content
            yield False

        if _cancelled(cancel_event):
            return

        prompt = self.build_prompt(filtered_history)
        decision = ""
        async for answer, reasoning in stream_decision(
            prompt, self.completion, cancel_event, self.reasoning_start, self.reasoning_end
        ):
            envelope.record(Stage.TERMINATE_CONTENT, prompt, answer, reasoning)
            decision = answer
            yield False

        if _cancelled(cancel_event):
            return

        parsed = DecisionParser.extract_termination(decision)
        verdict = "True: " if parsed.should_terminate else "False: "

        envelope.record(Stage.TERMINATE_DECISION, decision, verdict + parsed.reason, CODE_PROMPT)
        logger.info(f"Termination after {agent.name}: {verdict}{parsed.reason[:200]}")
        yield parsed.should_terminate


class SequentialSelectionStrategy(SelectionStrategy):
    """
    Round-robin selection in roster order.

    The agent after the last agent that spoke is chosen; the first agent
    speaks when the user spoke last or nobody has spoken yet.
    """

    async def select_next(
        self,
        envelope: ProgressEnvelope,
        agents: Sequence[AgentDescriptor],
        history: Sequence[Message],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Optional[AgentDescriptor]]:
        if not agents:
            yield None
            return

        last_author = history[-1].author if history else USER_AUTHOR
        names = [agent.name.lower() for agent in agents]

        if last_author.lower() in names:
            selected = agents[(names.index(last_author.lower()) + 1) % len(agents)]
            rationale = f"{selected.name} follows {last_author} in turn order."
        else:
            selected = agents[0]
            rationale = f"{last_author} spoke last, so the first agent {selected.name} responds."

        envelope.record(Stage.SELECT_DECISION, CODE_PROMPT, rationale, CODE_PROMPT)
        logger.info(f"Sequential selection: {selected.name}")
        yield selected


class KeywordTerminationStrategy(TerminationStrategy):
    """
    Terminate when the last message contains one of the keywords.

    Matching is case-insensitive. When ``agent_names`` is given, only
    messages from those agents are considered.
    """

    def __init__(
        self,
        keywords: Sequence[str],
        agent_names: Optional[Sequence[str]] = None,
        maximum_iterations: int = DEFAULT_MAXIMUM_ITERATIONS,
    ):
        super().__init__(maximum_iterations)
        self.keywords = [k.lower() for k in keywords if k and k.strip()]
        self.agent_names = {name.lower() for name in agent_names or []}
        logger.info(f"Initialized KeywordTerminationStrategy with keywords={self.keywords}")

    async def should_terminate(
        self,
        envelope: ProgressEnvelope,
        agent: AgentDescriptor,
        history: Sequence[Message],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[bool]:
        terminate = False
        reason = "No messages to evaluate."

        if history:
            last = history[-1]
            if self.agent_names and last.author.lower() not in self.agent_names:
                reason = f"{last.author} is not allowed to end the conversation."
            else:
                text = last.text.lower()
                matched = next((k for k in self.keywords if k in text), None)
                terminate = matched is not None
                if terminate:
                    reason = f"{last.author} said '{matched}'."
                else:
                    reason = f"No termination keyword in the message from {last.author}."

        verdict = "True: " if terminate else "False: "
        envelope.record(Stage.TERMINATE_DECISION, CODE_PROMPT, verdict + reason, CODE_PROMPT)
        yield terminate
