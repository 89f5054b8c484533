"""Conversation message and agent descriptor models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..utils.completion import CompletionService

USER_AUTHOR = "User"
DEFAULT_AGENT_EMOJI = "🤖"


@dataclass(frozen=True)
class Message:
    """
    A single turn in the conversation.

    Attributes:
        author: "User" or the name of the agent that spoke
        text: Message content
        timestamp: When the message was appended
    """
    author: str
    text: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class AgentDescriptor:
    """
    A configured agent persona.

    Attributes:
        name: Unique name within the roster (compared case-insensitively)
        instructions: System prompt appended to the generation prompt
        emoji: Display glyph sent with every reply
        completion: Completion capability this agent invokes; the
            orchestrator's default capability is used when None
    """
    name: str
    instructions: str
    emoji: str = DEFAULT_AGENT_EMOJI
    completion: Optional["CompletionService"] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Agent name must not be empty")
        if not self.instructions or not self.instructions.strip():
            raise ValueError(f"Agent '{self.name}' must have instructions")
