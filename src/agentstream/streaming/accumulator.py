"""Build the durable assistant message from normalized chunks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, assert_never

from agentstream.log import get_logger
from agentstream.messaging import ControlPart, TextPart, ToolInvocationPart
from agentstream.streaming.chunks import (
    AskUserQuestionChunk,
    AskUserQuestionResultChunk,
    AskUserQuestionTimeoutChunk,
    CompactChunk,
    ErrorChunk,
    FinishChunk,
    FinishStepChunk,
    MessageMetadataChunk,
    ReasoningDeltaChunk,
    ReasoningEndChunk,
    ReasoningStartChunk,
    SessionInitChunk,
    StartChunk,
    StartStepChunk,
    TaskNotificationChunk,
    TextDeltaChunk,
    TextEndChunk,
    TextStartChunk,
    ToolInputAvailableChunk,
    ToolInputDeltaChunk,
    ToolInputStartChunk,
    ToolOutputAvailableChunk,
    ToolOutputErrorChunk,
)


if TYPE_CHECKING:
    from agentstream.messaging import Part
    from agentstream.streaming.chunks import Chunk


logger = get_logger(__name__)


class MessageAccumulator:
    """Accumulates the parts and metadata of one in-flight assistant message."""

    def __init__(self) -> None:
        self.parts: list[Part] = []
        self.metadata: dict[str, Any] = {}
        self.text_buffer = ""

    def find_tool_part(self, tool_call_id: str) -> ToolInvocationPart | None:
        for part in self.parts:
            if isinstance(part, ToolInvocationPart) and part.tool_call_id == tool_call_id:
                return part
        return None

    def flush_text(self) -> None:
        """Turn buffered text into a text part, dropping whitespace-only buffers."""
        if self.text_buffer.strip():
            self.parts.append(TextPart(text=self.text_buffer))
        self.text_buffer = ""

    @property
    def has_content(self) -> bool:
        return bool(self.parts) or bool(self.text_buffer.strip())

    def apply(self, chunk: Chunk) -> None:  # noqa: PLR0912
        match chunk:
            case TextDeltaChunk(delta=delta):
                self.text_buffer += delta
            case TextEndChunk():
                self.flush_text()
            case ToolInputAvailableChunk(tool_call_id=call_id, tool_name=name, input=tool_input):
                self.parts.append(
                    ToolInvocationPart(tool_call_id=call_id, tool_name=name, input=tool_input)
                )
            case ToolOutputAvailableChunk(tool_call_id=call_id, output=output):
                if part := self.find_tool_part(call_id):
                    part.set_result(output)
                else:
                    logger.debug("Tool output for unknown call", tool_call_id=call_id)
            case ToolOutputErrorChunk(tool_call_id=call_id, error_text=error_text):
                if part := self.find_tool_part(call_id):
                    part.error = error_text
                    part.state = "result"
            case AskUserQuestionResultChunk(tool_use_id=call_id, result=result):
                if part := self.find_tool_part(call_id):
                    part.set_result(result)
            case MessageMetadataChunk(metadata=metadata):
                self.metadata = {**self.metadata, **metadata}
            case CompactChunk(tool_call_id=call_id, state=state):
                existing = next(
                    (
                        p
                        for p in self.parts
                        if isinstance(p, ControlPart) and p.tool_call_id == call_id
                    ),
                    None,
                )
                if existing:
                    existing.state = state
                else:
                    self.parts.append(ControlPart(control="compact", tool_call_id=call_id, state=state))
            case (
                StartChunk()
                | StartStepChunk()
                | TextStartChunk()
                | ReasoningStartChunk()
                | ReasoningDeltaChunk()
                | ReasoningEndChunk()
                | ToolInputStartChunk()
                | ToolInputDeltaChunk()
                | SessionInitChunk()
                | TaskNotificationChunk()
                | FinishStepChunk()
                | FinishChunk()
                | ErrorChunk()
                | AskUserQuestionChunk()
                | AskUserQuestionTimeoutChunk()
            ):
                pass
            case _ as unreachable:
                assert_never(unreachable)
