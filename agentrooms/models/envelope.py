"""Progress envelope emitted while a turn is being produced."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class Stage(str, Enum):
    """Stage keys of a progress envelope, in emission order."""

    SELECT_HISTORY = "select-history"
    SELECT_CONTENT = "select-content"
    SELECT_DECISION = "select-decision"
    AGENT = "agent"
    TERMINATE_HISTORY = "terminate-history"
    TERMINATE_CONTENT = "terminate-content"
    TERMINATE_DECISION = "terminate-decision"


@dataclass(frozen=True)
class StageHint:
    """
    Payload recorded for one stage.

    Attributes:
        prompt: Prompt sent to the model, or "code" when no model was used
        content: Result text (answer part of the model output)
        reason: Reasoning text or rationale
    """
    prompt: str = ""
    content: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"prompt": self.prompt, "content": self.content, "reason": self.reason}


@dataclass
class ProgressEnvelope:
    """
    Accumulating progress record for one iteration of the turn loop.

    Stages are only ever added or replaced by a newer payload, never
    removed, so every emitted snapshot contains all earlier stages of the
    iteration.

    Attributes:
        hints: Stage payloads keyed by stage
        agent_name: Name of the speaker once selected
        is_new_agent: True on the first event of an iteration
        is_message_done: True once the speaker's message was committed
        is_chat_complete: True on the final event of a completed loop
    """
    hints: Dict[Stage, StageHint] = field(default_factory=dict)
    agent_name: Optional[str] = None
    is_new_agent: bool = False
    is_message_done: bool = False
    is_chat_complete: bool = False

    def record(self, stage: Stage, prompt: str, content: str, reason: str) -> StageHint:
        """Replace the payload of ``stage`` with a newer one."""
        hint = StageHint(prompt=prompt or "", content=content or "", reason=reason or "")
        self.hints[Stage(stage)] = hint
        return hint

    def get(self, stage: Stage) -> Optional[StageHint]:
        return self.hints.get(Stage(stage))

    def snapshot(self) -> "ProgressEnvelope":
        """Return an independent copy for observers."""
        return ProgressEnvelope(
            hints=dict(self.hints),
            agent_name=self.agent_name,
            is_new_agent=self.is_new_agent,
            is_message_done=self.is_message_done,
            is_chat_complete=self.is_chat_complete,
        )

    def hints_payload(self) -> Dict[str, Dict[str, str]]:
        """Serialize hints as nested string-keyed records, in stage order."""
        return {stage.value: self.hints[stage].to_dict() for stage in Stage if stage in self.hints}
