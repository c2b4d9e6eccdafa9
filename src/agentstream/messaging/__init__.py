"""Durable message model."""

from __future__ import annotations

from agentstream.messaging.messages import Message, MessageRole, Session, SessionMode
from agentstream.messaging.parts import (
    AttachmentPart,
    ControlPart,
    Part,
    TextPart,
    ToolInvocationPart,
    ToolState,
)

__all__ = [
    "AttachmentPart",
    "ControlPart",
    "Message",
    "MessageRole",
    "Part",
    "Session",
    "SessionMode",
    "TextPart",
    "ToolInvocationPart",
    "ToolState",
]
