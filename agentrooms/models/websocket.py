"""Wire messages exchanged with chat clients over the WebSocket channel."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SUB_ACTION_CHUNK = "chunk"
SUB_ACTION_ERROR = "error"
SUB_ACTION_RESET = "reset"
SUB_ACTION_GET = "get"

ROOMS_ACTION = "rooms"
UNKNOWN_ACTION = "unknown"
SYSTEM_USER = "system"

DECIDING_AGENT_NAME = "Deciding..."
DECIDING_EMOJI = "🤔"


def _pick(data: Dict[str, Any], camel: str, pascal: str, default: Optional[str] = None) -> Optional[str]:
    value = data.get(camel)
    if value is None:
        value = data.get(pascal)
    if value is None:
        return default
    return str(value)


@dataclass(frozen=True)
class InboundCommand:
    """
    A command received from a client.

    Attributes:
        user_id: Client supplied user identifier
        transaction_id: Client supplied correlation id
        action: Room name, or "rooms" for the room listing
        sub_action: Optional sub action ("reset", "get")
        content: Message text
    """
    action: str
    user_id: str = ""
    transaction_id: str = ""
    sub_action: str = ""
    content: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InboundCommand":
        """
        Build a command from a decoded JSON object.

        Keys are accepted in camelCase or PascalCase.

        Raises:
            ValueError: If the object has no action
        """
        if not isinstance(data, dict):
            raise ValueError("Command must be a JSON object")

        action = _pick(data, "action", "Action")
        if not action or not action.strip():
            raise ValueError("Command is missing 'action'")

        return cls(
            action=action.strip(),
            user_id=_pick(data, "userId", "UserId", ""),
            transaction_id=_pick(data, "transactionId", "TransactionId", ""),
            sub_action=_pick(data, "subAction", "SubAction", ""),
            content=_pick(data, "content", "Content", ""),
        )


@dataclass
class ReplyMessage:
    """A reply sent to the client; one per progress event."""
    user_id: str
    transaction_id: str
    action: str
    sub_action: str = SUB_ACTION_CHUNK
    content: str = ""
    agent_name: str = DECIDING_AGENT_NAME
    emoji: str = DECIDING_EMOJI
    hints: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "transactionId": self.transaction_id,
            "action": self.action,
            "subAction": self.sub_action,
            "content": self.content,
            "agentName": self.agent_name,
            "emoji": self.emoji,
            "hints": self.hints,
        }


@dataclass
class RoomListMessage:
    """
    Reply to the "rooms" command.

    Each room entry carries ``name``, ``emoji`` and an ``agents`` list of
    ``{name, emoji}`` records.
    """
    rooms: List[Dict[str, Any]]
    transaction_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": SYSTEM_USER,
            "transactionId": self.transaction_id,
            "action": ROOMS_ACTION,
            "subAction": "room list",
            "content": "",
            "rooms": self.rooms,
        }
