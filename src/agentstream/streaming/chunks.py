"""Normalized output chunks emitted to turn subscribers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(kw_only=True)
class StartChunk:
    """Generation started."""

    chunk_kind: Literal["start"] = "start"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class StartStepChunk:
    """A generation step started."""

    chunk_kind: Literal["start-step"] = "start-step"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class TextStartChunk:
    """A text block was opened."""

    id: str
    """Text block id."""

    chunk_kind: Literal["text-start"] = "text-start"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class TextDeltaChunk:
    """Incremental text for an open block."""

    id: str
    """Text block id."""

    delta: str
    """New text."""

    chunk_kind: Literal["text-delta"] = "text-delta"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class TextEndChunk:
    """A text block was closed."""

    id: str
    """Text block id."""

    chunk_kind: Literal["text-end"] = "text-end"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ReasoningStartChunk:
    """A reasoning block was opened."""

    id: str
    """Reasoning block id."""

    chunk_kind: Literal["reasoning-start"] = "reasoning-start"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ReasoningDeltaChunk:
    """Incremental reasoning text."""

    id: str
    """Reasoning block id."""

    delta: str
    """New reasoning text."""

    chunk_kind: Literal["reasoning-delta"] = "reasoning-delta"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ReasoningEndChunk:
    """A reasoning block was closed."""

    id: str
    """Reasoning block id."""

    chunk_kind: Literal["reasoning-end"] = "reasoning-end"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ToolInputStartChunk:
    """The model started streaming a tool call."""

    tool_call_id: str
    """Id of the call."""

    tool_name: str
    """Name of the called tool."""

    chunk_kind: Literal["tool-input-start"] = "tool-input-start"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ToolInputDeltaChunk:
    """Partial JSON of a streaming tool call input."""

    tool_call_id: str
    """Id of the call."""

    input_text_delta: str
    """Raw JSON fragment."""

    chunk_kind: Literal["tool-input-delta"] = "tool-input-delta"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ToolInputAvailableChunk:
    """A tool call with its complete input."""

    tool_call_id: str
    """Id of the call."""

    tool_name: str
    """Name of the called tool."""

    input: dict[str, Any] = field(default_factory=dict)
    """Parsed input arguments."""

    chunk_kind: Literal["tool-input-available"] = "tool-input-available"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ToolOutputAvailableChunk:
    """Result of a tool call."""

    tool_call_id: str
    """Id of the call."""

    output: Any
    """Tool output."""

    chunk_kind: Literal["tool-output-available"] = "tool-output-available"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ToolOutputErrorChunk:
    """A tool call failed."""

    tool_call_id: str
    """Id of the call."""

    error_text: str
    """Error reported by the tool."""

    chunk_kind: Literal["tool-output-error"] = "tool-output-error"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class SessionInitChunk:
    """Provider session initialized with its tool inventory."""

    tools: list[str] = field(default_factory=list)
    """Tool names available to the model."""

    mcp_servers: list[dict[str, Any]] = field(default_factory=list)
    """Capability servers as seen by the provider (name, status, optional error)."""

    plugins: list[Any] = field(default_factory=list)
    """Loaded plugins."""

    skills: list[Any] = field(default_factory=list)
    """Available skills."""

    chunk_kind: Literal["session-init"] = "session-init"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class CompactChunk:
    """Context compaction progress, rendered like a tool call."""

    tool_call_id: str
    """Id shared by the start and boundary chunk of one compaction."""

    state: Literal["input-streaming", "output-available"]
    """Compaction progress."""

    chunk_kind: Literal["system-compact"] = "system-compact"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class TaskNotificationChunk:
    """Status of a background shell task."""

    task_id: str
    """Background task id."""

    status: str
    """``running``, ``completed``, ``failed`` or ``stopped``."""

    output_file: str | None = None
    """File the task writes its output to."""

    summary: str | None = None
    """Short description, usually the command."""

    command: str | None = None
    """Command that started the task."""

    chunk_kind: Literal["task-notification"] = "task-notification"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class MessageMetadataChunk:
    """Usage and session metadata for the message being generated."""

    metadata: dict[str, Any]
    """Fields merged into the message metadata, last write wins."""

    chunk_kind: Literal["message-metadata"] = "message-metadata"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class FinishStepChunk:
    """A generation step finished."""

    chunk_kind: Literal["finish-step"] = "finish-step"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class FinishChunk:
    """The turn finished. Emitted once per turn, on every path."""

    metadata: dict[str, Any] | None = None
    """Final message metadata, if any was reported."""

    chunk_kind: Literal["finish"] = "finish"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class ErrorChunk:
    """A classified, user facing error."""

    error_text: str
    """Human readable error text."""

    category: str
    """Error category (see ``agentstream.sessions.errors``)."""

    debug_info: dict[str, Any] = field(default_factory=dict)
    """Additional context for diagnosing the error."""

    chunk_kind: Literal["error"] = "error"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class AskUserQuestionChunk:
    """An interactive question is waiting for the user."""

    tool_use_id: str
    """Id of the question tool call."""

    questions: list[Any]
    """Questions as sent by the model."""

    chunk_kind: Literal["ask-user-question"] = "ask-user-question"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class AskUserQuestionTimeoutChunk:
    """A pending question expired without an answer."""

    tool_use_id: str
    """Id of the question tool call."""

    chunk_kind: Literal["ask-user-question-timeout"] = "ask-user-question-timeout"
    """Chunk type identifier."""


@dataclass(kw_only=True)
class AskUserQuestionResultChunk:
    """A pending question was answered or skipped."""

    tool_use_id: str
    """Id of the question tool call."""

    result: Any
    """``{"answers": ...}`` when answered, else the denial message."""

    chunk_kind: Literal["ask-user-question-result"] = "ask-user-question-result"
    """Chunk type identifier."""


type ApprovalChunk = AskUserQuestionChunk | AskUserQuestionTimeoutChunk | AskUserQuestionResultChunk

type Chunk = (
    StartChunk
    | StartStepChunk
    | TextStartChunk
    | TextDeltaChunk
    | TextEndChunk
    | ReasoningStartChunk
    | ReasoningDeltaChunk
    | ReasoningEndChunk
    | ToolInputStartChunk
    | ToolInputDeltaChunk
    | ToolInputAvailableChunk
    | ToolOutputAvailableChunk
    | ToolOutputErrorChunk
    | SessionInitChunk
    | CompactChunk
    | TaskNotificationChunk
    | MessageMetadataChunk
    | FinishStepChunk
    | FinishChunk
    | ErrorChunk
    | AskUserQuestionChunk
    | AskUserQuestionTimeoutChunk
    | AskUserQuestionResultChunk
)
