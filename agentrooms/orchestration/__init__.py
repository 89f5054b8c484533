"""Orchestration layer for multi-agent chat rooms."""

from .conversation import ConversationStore
from .history_filter import FilteredHistory, filter_history
from .strategies import (
    SelectionStrategy,
    TerminationStrategy,
    TextDecisionSelectionStrategy,
    TextDecisionTerminationStrategy,
    SequentialSelectionStrategy,
    KeywordTerminationStrategy,
)
from .orchestrator import OrchestratorState, StreamingOrchestrator
from .rooms import RoomDefinition, ChatRoom, ChatSession, RoomCatalog

__all__ = [
    "ConversationStore",
    "FilteredHistory",
    "filter_history",
    "SelectionStrategy",
    "TerminationStrategy",
    "TextDecisionSelectionStrategy",
    "TextDecisionTerminationStrategy",
    "SequentialSelectionStrategy",
    "KeywordTerminationStrategy",
    "OrchestratorState",
    "StreamingOrchestrator",
    "RoomDefinition",
    "ChatRoom",
    "ChatSession",
    "RoomCatalog",
]
