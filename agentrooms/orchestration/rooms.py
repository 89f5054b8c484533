"""Chat rooms defined in YAML files and the per-connection sessions using them."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml

from ..models.envelope import ProgressEnvelope, Stage
from ..models.message import AgentDescriptor, DEFAULT_AGENT_EMOJI
from ..models.websocket import (
    DECIDING_AGENT_NAME,
    DECIDING_EMOJI,
    ROOMS_ACTION,
    SUB_ACTION_ERROR,
    SUB_ACTION_GET,
    SUB_ACTION_RESET,
    UNKNOWN_ACTION,
    InboundCommand,
    ReplyMessage,
    RoomListMessage,
)
from ..utils.completion import CompletionService
from ..utils.config import OrchestrationConfig
from ..utils.errors import ChatRoomError, ConfigurationError
from ..utils.logging import set_context
from .conversation import ConversationStore
from .orchestrator import StreamingOrchestrator
from .strategies import (
    KeywordTerminationStrategy,
    SelectionStrategy,
    SequentialSelectionStrategy,
    TerminationStrategy,
    TextDecisionSelectionStrategy,
    TextDecisionTerminationStrategy,
)

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]

STRATEGY_TEXT = "text"
STRATEGY_SEQUENTIAL = "sequential"
STRATEGY_KEYWORD = "keyword"

ROOM_FILE_PATTERNS = ("*.yml", "*.yaml")


@dataclass
class StrategySpec:
    """
    Strategy section of a room file.

    Attributes:
        kind: "text" (model decides), "sequential" or "keyword"
        description: Selection criteria or termination condition
        preconditions: History filter markers ("last message", "remove content")
        filter_instruction: Optional model-assisted history filter
        keywords: Termination keywords for the "keyword" kind
        agents: Agents whose messages may end the conversation ("keyword" kind)
        maximum_iterations: Optional per-room iteration cap
    """
    kind: str = STRATEGY_TEXT
    description: str = ""
    preconditions: List[str] = field(default_factory=list)
    filter_instruction: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    agents: List[str] = field(default_factory=list)
    maximum_iterations: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], source: str, default_kind: str) -> "StrategySpec":
        if data is None:
            return cls(kind=default_kind)
        if not isinstance(data, dict):
            raise ConfigurationError.invalid(source, "strategy must be a mapping")

        kind = str(data.get("type", STRATEGY_TEXT)).strip().lower()
        if kind not in (STRATEGY_TEXT, STRATEGY_SEQUENTIAL, STRATEGY_KEYWORD):
            raise ConfigurationError.invalid(source, f"unknown strategy type '{kind}'")

        maximum_iterations = data.get("maximum-iterations")
        if maximum_iterations is not None:
            try:
                maximum_iterations = int(maximum_iterations)
            except (TypeError, ValueError):
                raise ConfigurationError.invalid(source, "maximum-iterations must be an integer")
            if maximum_iterations < 1:
                raise ConfigurationError.invalid(source, "maximum-iterations must be at least 1")

        return cls(
            kind=kind,
            description=str(data.get("description") or ""),
            preconditions=[str(p) for p in data.get("preset-conditions") or []],
            filter_instruction=data.get("filter") or None,
            keywords=[str(k) for k in data.get("keywords") or []],
            agents=[str(a) for a in data.get("agents") or []],
            maximum_iterations=maximum_iterations,
        )


@dataclass
class RoomDefinition:
    """
    A chat room as described by a YAML file.

    Example file::

        name: copywriting
        emoji: "✍️"
        agents:
          CopyWriter:
            instructions: Write one slogan.
            emoji: "📝"
        strategies:
          selection:
            description: After User or ArtDirector, CopyWriter speaks.
            preset-conditions: ["last message", "remove content"]
          termination:
            description: The ArtDirector approved the copy.
            preset-conditions: ["last message"]
    """
    name: str
    emoji: str
    agents: List[AgentDescriptor]
    selection: StrategySpec
    termination: StrategySpec
    source: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> "RoomDefinition":
        """
        Build a definition from parsed YAML.

        Raises:
            ConfigurationError: If the room has no name, no agents, or an
                agent lacks instructions
        """
        if not isinstance(data, dict):
            raise ConfigurationError.invalid(source, "room file must contain a mapping")

        name = str(data.get("name") or "").strip()
        if not name:
            raise ConfigurationError.invalid(source, "room has no name")

        agents_section = data.get("agents") or {}
        if not isinstance(agents_section, dict) or not agents_section:
            raise ConfigurationError.invalid(source, "room defines no agents")

        agents: List[AgentDescriptor] = []
        for agent_name, settings in agents_section.items():
            settings = settings or {}
            if not isinstance(settings, dict):
                raise ConfigurationError.invalid(source, f"agent '{agent_name}' must be a mapping")
            # libraries (vector store lookups) are accepted and ignored
            try:
                agents.append(AgentDescriptor(
                    name=str(agent_name),
                    instructions=str(settings.get("instructions") or ""),
                    emoji=str(settings.get("emoji") or DEFAULT_AGENT_EMOJI),
                ))
            except ValueError as e:
                raise ConfigurationError.invalid(source, str(e))

        strategies = data.get("strategies") or {}
        if not isinstance(strategies, dict):
            raise ConfigurationError.invalid(source, "strategies must be a mapping")

        return cls(
            name=name,
            emoji=str(data.get("emoji") or DEFAULT_AGENT_EMOJI),
            agents=agents,
            selection=StrategySpec.from_dict(strategies.get("selection"), source, STRATEGY_SEQUENTIAL),
            termination=StrategySpec.from_dict(strategies.get("termination"), source, STRATEGY_KEYWORD),
            source=source,
        )

    @classmethod
    def from_yaml_file(cls, path) -> "RoomDefinition":
        """
        Load a room definition from a YAML file.

        Args:
            path: Path to the room file

        Returns:
            RoomDefinition

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError.invalid(str(path), str(e))

        return cls.from_dict(data or {}, source=str(path))

    def find_agent(self, name: Optional[str]) -> Optional[AgentDescriptor]:
        if not name:
            return None
        return next((a for a in self.agents if a.name.lower() == name.lower()), None)

    def build_selection(self, completion: CompletionService, config: OrchestrationConfig) -> SelectionStrategy:
        spec = self.selection
        maximum_iterations = spec.maximum_iterations or config.max_iterations
        if spec.kind == STRATEGY_TEXT:
            return TextDecisionSelectionStrategy(
                completion,
                spec.description,
                preconditions=spec.preconditions,
                filter_instruction=spec.filter_instruction,
                maximum_iterations=maximum_iterations,
                reasoning_start=config.reasoning_start,
                reasoning_end=config.reasoning_end,
            )
        return SequentialSelectionStrategy(maximum_iterations)

    def build_termination(self, completion: CompletionService, config: OrchestrationConfig) -> TerminationStrategy:
        spec = self.termination
        if spec.kind == STRATEGY_TEXT:
            return TextDecisionTerminationStrategy(
                completion,
                spec.description,
                preconditions=spec.preconditions,
                filter_instruction=spec.filter_instruction,
                maximum_iterations=spec.maximum_iterations or config.max_iterations,
                reasoning_start=config.reasoning_start,
                reasoning_end=config.reasoning_end,
            )
        # Without keywords the room answers once per user message.
        default_cap = config.max_iterations if spec.keywords else 1
        return KeywordTerminationStrategy(
            spec.keywords,
            agent_names=spec.agents,
            maximum_iterations=spec.maximum_iterations or default_cap,
        )

    def build_orchestrator(self, completion: CompletionService, config: OrchestrationConfig) -> StreamingOrchestrator:
        """
        Create a fresh orchestrator with its own history for this room.

        Args:
            completion: Completion service shared by agents and strategies
            config: Orchestration settings

        Returns:
            StreamingOrchestrator with an initialized roster
        """
        store = ConversationStore(room_name=self.name)
        store.init_roster(self.agents)
        return StreamingOrchestrator(
            store,
            self.build_selection(completion, config),
            self.build_termination(completion, config),
            completion=completion,
            reasoning_start=config.reasoning_start,
            reasoning_end=config.reasoning_end,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "emoji": self.emoji,
            "agents": [{"name": a.name, "emoji": a.emoji} for a in self.agents],
        }


def error_reply(user_id: str, action: str, message: str) -> ReplyMessage:
    """Build the single error reply sent for a failed command."""
    return ReplyMessage(
        user_id=user_id,
        transaction_id=str(uuid.uuid4()),
        action=action,
        sub_action=SUB_ACTION_ERROR,
        content=message,
        agent_name="",
        emoji="",
    )


class ChatRoom:
    """
    One room within one session.

    Owns an orchestrator and turns its progress envelopes into replies.
    Only one turn loop runs at a time; a message arriving meanwhile waits
    for the running loop to finish.
    """

    def __init__(self, definition: RoomDefinition, orchestrator: StreamingOrchestrator):
        self.definition = definition
        self.orchestrator = orchestrator
        self._lock = asyncio.Lock()
        self._cancel_event: Optional[asyncio.Event] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def cancel(self):
        """Ask the running turn loop, if any, to stop."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    async def reset(self):
        """Stop the running loop and clear the history."""
        self.cancel()
        async with self._lock:
            self.orchestrator.reset()
        logger.info(f"Chat history cleared for room {self.name}")

    async def handle_command(self, command: InboundCommand, send: Sender):
        """
        Handle one inbound command for this room.

        A "reset" sub action clears the history. Anything else appends the
        content as a user message and streams the agents' replies.

        Args:
            command: Inbound command addressed to this room
            send: Coroutine sending one reply dict to the client
        """
        set_context(room=self.name)

        if command.sub_action.lower() == SUB_ACTION_RESET:
            await self.reset()
            return

        async with self._lock:
            cancel_event = asyncio.Event()
            self._cancel_event = cancel_event
            try:
                self.orchestrator.add_user_message(command.content)
                await self._stream_replies(command, send, cancel_event)
            except ChatRoomError as e:
                logger.error(f"Error handling command for room {self.name}: {e}")
                await send(error_reply(command.user_id, self.name, e.message).to_dict())
            except Exception as e:
                logger.exception(f"Unexpected error handling command for room {self.name}")
                await send(error_reply(command.user_id, self.name, f"Error: {e}").to_dict())
            finally:
                self._cancel_event = None

    async def _stream_replies(self, command: InboundCommand, send: Sender, cancel_event: asyncio.Event):
        reply = self._new_reply(command, command.transaction_id)

        async for envelope in self.orchestrator.invoke_stream(cancel_event):
            if envelope.is_new_agent:
                reply = self._new_reply(command, str(uuid.uuid4()))
            self._update_reply(reply, envelope)
            await send(reply.to_dict())

    def _new_reply(self, command: InboundCommand, transaction_id: str) -> ReplyMessage:
        return ReplyMessage(
            user_id=command.user_id,
            transaction_id=transaction_id,
            action=self.name,
        )

    def _update_reply(self, reply: ReplyMessage, envelope: ProgressEnvelope):
        agent = self.definition.find_agent(envelope.agent_name)
        reply.agent_name = envelope.agent_name or DECIDING_AGENT_NAME
        reply.emoji = agent.emoji if agent else DECIDING_EMOJI
        reply.hints = envelope.hints_payload()
        agent_hint = envelope.get(Stage.AGENT)
        reply.content = agent_hint.content if agent_hint else ""


class ChatSession:
    """
    State of one client connection.

    Rooms are created on first use, each with its own history, so two
    connections never share a conversation.
    """

    def __init__(self, catalog: "RoomCatalog", session_id: Optional[str] = None):
        self.catalog = catalog
        self.session_id = session_id or uuid.uuid4().hex[:8]
        self._rooms: Dict[str, ChatRoom] = {}

    def room(self, name: str) -> Optional[ChatRoom]:
        key = name.strip().lower()
        if key not in self._rooms:
            room = self.catalog.create_room(name)
            if room is None:
                return None
            self._rooms[key] = room
        return self._rooms[key]

    async def dispatch(self, command: InboundCommand, send: Sender):
        """
        Route a command to the room listing, a room, or the unknown reply.

        Args:
            command: Parsed inbound command
            send: Coroutine sending one reply dict to the client
        """
        set_context(session=self.session_id)

        if command.action.lower() == ROOMS_ACTION:
            if command.sub_action.lower() in ("", SUB_ACTION_GET):
                await send(self.catalog.room_list(command.transaction_id).to_dict())
                return
        else:
            room = self.room(command.action)
            if room is not None:
                await room.handle_command(command, send)
                return

        logger.warning(f"Unknown action '{command.action}' / '{command.sub_action}'")
        await send(ReplyMessage(
            user_id=command.user_id,
            transaction_id=command.transaction_id,
            action=UNKNOWN_ACTION,
            sub_action=SUB_ACTION_ERROR,
            content=f"Unknown action '{command.action}'",
            agent_name="",
            emoji="",
        ).to_dict())

    def close(self):
        """Cancel every running turn loop of this session."""
        for room in self._rooms.values():
            room.cancel()
        logger.info(f"Session {self.session_id} closed")


class RoomCatalog:
    """
    Read-only set of room definitions shared by all sessions.

    Attributes:
        completion: Completion service given to every orchestrator
        config: Orchestration settings
    """

    def __init__(
        self,
        definitions: List[RoomDefinition],
        completion: CompletionService,
        config: Optional[OrchestrationConfig] = None,
    ):
        self.completion = completion
        self.config = config or OrchestrationConfig()
        self._definitions: Dict[str, RoomDefinition] = {}
        for definition in definitions:
            key = definition.name.lower()
            if key in self._definitions:
                logger.warning(f"Skipping duplicate room '{definition.name}' from {definition.source}")
                continue
            self._definitions[key] = definition

    @classmethod
    def load(
        cls,
        directory,
        completion: CompletionService,
        config: Optional[OrchestrationConfig] = None,
    ) -> "RoomCatalog":
        """
        Load every room file in ``directory``.

        Invalid files are skipped with a warning.

        Args:
            directory: Directory containing *.yml / *.yaml room files
            completion: Completion service for the rooms
            config: Orchestration settings

        Returns:
            RoomCatalog
        """
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning(f"Rooms directory not found: {directory}")
            return cls([], completion, config)

        paths = sorted({p for pattern in ROOM_FILE_PATTERNS for p in directory.glob(pattern)})
        definitions: List[RoomDefinition] = []
        for path in paths:
            try:
                definitions.append(RoomDefinition.from_yaml_file(path))
            except ConfigurationError as e:
                logger.warning(f"Skipping room file {path}: {e.message}")

        logger.info(f"Loaded {len(definitions)} rooms from {directory}")
        return cls(definitions, completion, config)

    @property
    def names(self) -> List[str]:
        return [d.name for d in self._definitions.values()]

    def get(self, name: str) -> Optional[RoomDefinition]:
        return self._definitions.get(name.strip().lower())

    def create_room(self, name: str) -> Optional[ChatRoom]:
        definition = self.get(name)
        if definition is None:
            return None
        return ChatRoom(definition, definition.build_orchestrator(self.completion, self.config))

    def new_session(self, session_id: Optional[str] = None) -> ChatSession:
        return ChatSession(self, session_id=session_id)

    def room_list(self, transaction_id: str = "") -> RoomListMessage:
        return RoomListMessage(
            rooms=[d.summary() for d in self._definitions.values()],
            transaction_id=transaction_id,
        )
