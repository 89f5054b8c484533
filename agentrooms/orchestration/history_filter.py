"""Reduce conversation history to a JSON snapshot for strategy prompts."""

import asyncio
import json
import logging
from typing import AsyncIterator, NamedTuple, Optional, Sequence

from ..models.message import Message, USER_AUTHOR
from ..utils.completion import CompletionService
from ..utils.reasoning import REASONING_END, REASONING_START, remove_reasoning, split_reasoning

logger = logging.getLogger(__name__)

LAST_MESSAGE = "last message"
REMOVE_CONTENT = "remove content"

CODE_PROMPT = "code"


class FilteredHistory(NamedTuple):
    """One snapshot produced by the history filter."""
    prompt: str
    content: str
    reason: str


def build_snapshot(
    history: Sequence[Message],
    include_text: bool = True,
    reasoning_start: str = REASONING_START,
    reasoning_end: str = REASONING_END,
) -> str:
    """
    Serialize messages to a JSON array of ``{order, author, text}`` objects.

    Args:
        history: Messages to serialize
        include_text: When False only ``order`` and ``author`` are kept
        reasoning_start: Opening marker of reasoning spans removed from text
        reasoning_end: Closing marker of reasoning spans removed from text

    Returns:
        JSON array text; ``order`` is 1-based
    """
    items = []
    for index, message in enumerate(history):
        item = {"order": index + 1, "author": message.author or USER_AUTHOR}
        if include_text:
            item["text"] = remove_reasoning(message.text or "", reasoning_start, reasoning_end)
        items.append(item)
    return json.dumps(items, ensure_ascii=False)


def apply_preconditions(history: Sequence[Message], preconditions: Optional[Sequence[str]]):
    """
    Apply local precondition markers to the history.

    Returns:
        Tuple of (retained messages, include_text flag)
    """
    retained = list(history)
    include_text = True

    for condition in preconditions or []:
        marker = (condition or "").strip().lower()
        if marker == LAST_MESSAGE:
            if history:
                retained = [history[-1]]
        elif marker == REMOVE_CONTENT:
            include_text = False
        else:
            logger.debug(f"Ignoring unknown pre-condition: {condition!r}")

    return retained, include_text


def build_filter_prompt(filter_instruction: str, snapshot: str) -> str:
    return (
        "Task:\n"
        "Given an array of messages, each with an order, an author and a text, "
        "process the array with the following logic:\n"
        f"{filter_instruction}\n\n"
        "Remove any message that does not meet these criteria.\n"
        "Expected Output:\n"
        "   1. Return only a JSON array of the retained messages, in the same format\n"
        "   2. No code, just the JSON array\n"
        "   3. No explanation on how you found the answer, just the JSON array\n"
        "Messages are below:\n"
        "```json\n"
        f"{snapshot}\n"
        "```\n"
    )


async def filter_history(
    preconditions: Optional[Sequence[str]],
    filter_instruction: Optional[str],
    history: Sequence[Message],
    completion: CompletionService,
    cancel_event: Optional[asyncio.Event] = None,
    reasoning_start: str = REASONING_START,
    reasoning_end: str = REASONING_END,
) -> AsyncIterator[FilteredHistory]:
    """
    Produce filtered snapshots of the history.

    Preconditions are applied locally first. When preconditions are given
    without a filter instruction exactly one snapshot is produced and no
    model is called. Otherwise the instruction and the snapshot are sent
    to the completion service and one snapshot is produced per streamed chunk, with the model's
    reasoning split from its answer.

    Args:
        preconditions: Marker strings ("last message", "remove content")
        filter_instruction: Natural-language filtering instruction
        history: Conversation history
        completion: Completion service used for model-assisted filtering
        cancel_event: Stops streaming early once set
        reasoning_start: Opening marker of reasoning spans
        reasoning_end: Closing marker of reasoning spans

    Yields:
        FilteredHistory(prompt, content, reason)

    Raises:
        UpstreamCompletionError: If the completion service fails
    """
    retained, include_text = apply_preconditions(history, preconditions)
    snapshot = build_snapshot(retained, include_text, reasoning_start, reasoning_end)
    has_instruction = bool(filter_instruction and filter_instruction.strip())

    if preconditions and not has_instruction:
        applied = json.dumps(list(preconditions), ensure_ascii=False)
        yield FilteredHistory(CODE_PROMPT, snapshot, f"applied pre-condition: {applied}")
        return

    prompt = build_filter_prompt(filter_instruction or "", snapshot)
    buffer = ""
    async for chunk in completion.stream(prompt, cancel_event=cancel_event):
        if cancel_event is not None and cancel_event.is_set():
            return
        buffer += chunk
        answer, reasoning = split_reasoning(buffer, reasoning_start, reasoning_end)
        yield FilteredHistory(prompt, answer, reasoning)
