"""Messages and sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal
from uuid import uuid4

from agentstream.messaging.parts import TextPart
from agentstream.utils.time_utils import get_now


if TYPE_CHECKING:
    from datetime import datetime

    from agentstream.messaging.parts import Part


MessageRole = Literal["user", "assistant"]
SessionMode = Literal["plan", "agent"]


@dataclass(kw_only=True)
class Message:
    """One durable conversation message."""

    role: MessageRole
    """Who produced the message."""

    parts: list[Part] = field(default_factory=list)
    """Ordered content parts."""

    metadata: dict[str, Any] = field(default_factory=dict)
    """Token counts, per-model usage, provider session id and similar."""

    message_id: str = field(default_factory=lambda: str(uuid4()))
    """Unique identifier for this message."""

    created_at: datetime = field(default_factory=get_now)
    """When the message was created."""

    @property
    def first_text(self) -> str | None:
        """Text of the first text part, if any."""
        for part in self.parts:
            if isinstance(part, TextPart):
                return part.text
        return None

    @property
    def text(self) -> str:
        """All text parts joined by newlines."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass(kw_only=True)
class Session:
    """One independently resumable conversation thread."""

    session_id: str
    """Identity of the session."""

    conversation_id: str | None = None
    """Conversation the session belongs to."""

    cwd: str | None = None
    """Working directory generation runs in."""

    mode: SessionMode = "agent"
    """``plan`` restricts edits to markdown files."""

    resume_token: str | None = None
    """Provider-issued token used to resume the provider-side conversation."""

    messages: list[Message] = field(default_factory=list)
    """Durable message list."""

    stream_id: str | None = None
    """In-progress marker, set while a turn is generating."""

    preview_stats: dict[str, Any] = field(default_factory=dict)
    """Derived per-input statistics, recomputed on every flush."""

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None
