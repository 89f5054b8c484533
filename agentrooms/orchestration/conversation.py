"""Conversation history and agent roster for a chat room."""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from ..models.message import AgentDescriptor, Message
from ..utils.errors import InvalidStateError

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    Ordered message history plus the roster of agents taking part.

    History is append-only; only ``reset`` clears it. The roster is set
    exactly once. The store is not safe for concurrent writers: the owning
    orchestrator serializes turns.

    Attributes:
        room_name: Optional room name used in log messages
    """

    def __init__(self, room_name: Optional[str] = None):
        """
        Initialize an empty store.

        Args:
            room_name: Optional room identifier for logging
        """
        self.room_name = room_name
        self._messages: List[Message] = []
        self._agents: Dict[str, AgentDescriptor] = {}

    @property
    def roster_initialized(self) -> bool:
        return bool(self._agents)

    def init_roster(self, agents: Iterable[AgentDescriptor]):
        """
        Set the agent roster.

        Args:
            agents: Agent descriptors in roster order

        Raises:
            InvalidStateError: If the roster is already set, empty, or has
                two agents whose names differ only by case
        """
        if self._agents:
            raise InvalidStateError.roster_already_initialized()

        roster: Dict[str, AgentDescriptor] = {}
        for agent in agents:
            key = agent.name.lower()
            if key in roster:
                raise InvalidStateError.duplicate_agent(agent.name)
            roster[key] = agent

        if not roster:
            raise InvalidStateError.empty_roster()

        self._agents = roster
        logger.info(
            f"Roster initialized for room {self.room_name or 'unknown'}: "
            f"{', '.join(a.name for a in roster.values())}"
        )

    def agents(self) -> Tuple[AgentDescriptor, ...]:
        """Return the roster in insertion order."""
        return tuple(self._agents.values())

    def find_agent(self, name: Optional[str]) -> Optional[AgentDescriptor]:
        """
        Look up an agent by name, ignoring case and surrounding whitespace.

        Args:
            name: Agent name as written by a person or a model

        Returns:
            The matching descriptor, or None
        """
        if not name:
            return None
        return self._agents.get(name.strip().lower())

    def append_message(self, author: str, text: str) -> Message:
        """
        Append a message to the history.

        Args:
            author: "User" or an agent name
            text: Message content

        Returns:
            The appended Message

        Raises:
            InvalidStateError: If no roster has been set
            ValueError: If author is empty
        """
        if not self._agents:
            raise InvalidStateError.roster_not_initialized("append a message")
        if not author or not author.strip():
            raise ValueError("Message author must not be empty")

        message = Message(author=author, text=text or "")
        self._messages.append(message)

        logger.debug(
            f"Appended message {len(self._messages)} from {author}: "
            f"{message.text[:100]}"
        )
        return message

    def reset(self):
        """Clear the history. The roster is kept."""
        self._messages = []
        logger.info(f"History reset for room {self.room_name or 'unknown'}")

    @property
    def history(self) -> Tuple[Message, ...]:
        """Read-only view of the history in append order."""
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
