"""Data models for messages, agents, progress envelopes and wire replies."""

from .message import Message, AgentDescriptor
from .envelope import Stage, StageHint, ProgressEnvelope
from .websocket import InboundCommand, ReplyMessage, RoomListMessage

__all__ = [
    "Message",
    "AgentDescriptor",
    "Stage",
    "StageHint",
    "ProgressEnvelope",
    "InboundCommand",
    "ReplyMessage",
    "RoomListMessage",
]
