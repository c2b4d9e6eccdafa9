"""Message parts.

A message is an ordered list of parts. ``Part`` is a closed union, so code
consuming parts matches on the concrete classes and ends with ``assert_never``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from agentstream.utils.time_utils import now_ms


ToolState = Literal["call", "result"]
AttachmentKind = Literal["image", "file"]
ControlState = Literal["input-streaming", "output-available"]


@dataclass(kw_only=True)
class TextPart:
    """A finished block of assistant or user text."""

    text: str
    """The text content."""

    kind: Literal["text"] = "text"
    """Part type identifier."""


@dataclass(kw_only=True)
class ToolInvocationPart:
    """A tool call made during generation, and its result once available."""

    tool_call_id: str
    """Call id, ``parent:child`` for calls made by nested agents."""

    tool_name: str
    """Name of the invoked tool."""

    input: dict[str, Any] = field(default_factory=dict)
    """Arguments the tool was called with."""

    state: ToolState = "call"
    """``call`` until a result is attached."""

    output: Any = None
    """Tool output once ``state`` is ``result``."""

    error: str | None = None
    """Error text if the tool failed."""

    started_at: int = field(default_factory=now_ms)
    """Epoch milliseconds when the call was first seen."""

    kind: Literal["tool"] = "tool"
    """Part type identifier."""

    @property
    def type_name(self) -> str:
        return f"tool-{self.tool_name}"

    def set_result(self, output: Any) -> None:
        self.output = output
        self.state = "result"


@dataclass(kw_only=True)
class AttachmentPart:
    """An image or file attached to a user message."""

    attachment: AttachmentKind
    """Whether this is an image or a generic file."""

    data: str
    """Base64 encoded content."""

    media_type: str
    """MIME type of the content."""

    filename: str | None = None
    """Original filename, if known."""

    kind: Literal["attachment"] = "attachment"
    """Part type identifier."""


@dataclass(kw_only=True)
class ControlPart:
    """A control marker rendered inline, e.g. a context compaction notice."""

    control: Literal["compact"]
    """What the marker stands for."""

    tool_call_id: str
    """Id used to update the marker as its state progresses."""

    state: ControlState = "input-streaming"
    """Progress of the controlled operation."""

    kind: Literal["control"] = "control"
    """Part type identifier."""


type Part = TextPart | ToolInvocationPart | AttachmentPart | ControlPart
