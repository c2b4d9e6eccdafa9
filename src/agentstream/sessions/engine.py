"""Interface of the completion engine that generates a turn."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from agentstream.messaging import AttachmentPart, SessionMode
    from agentstream.permissions import PermissionDecision
    from agentstream.prompting import ParsedMentions, SystemPrompt
    from agentstream.utils.cancellation import CancellationToken
    from agentstream_config.servers import ServerDescriptor


type CanUseTool = Callable[[str, dict[str, Any], str], Awaitable[PermissionDecision]]
"""``(tool_name, tool_input, tool_use_id) -> decision``, consulted before each tool call."""


@dataclass(kw_only=True)
class EngineRequest:
    """Everything the engine needs to run one turn."""

    session_id: str
    """Session the turn belongs to."""

    prompt: str
    """Fully assembled user prompt."""

    cancel_token: CancellationToken
    """Checked by the engine at each suspension point."""

    can_use_tool: CanUseTool
    """Permission callback for tool calls."""

    system_prompt: SystemPrompt | None = None
    """System prompt, or None for the engine default."""

    servers: Sequence[ServerDescriptor] = ()
    """Readiness-filtered capability servers."""

    resume_token: str | None = None
    """Provider-side conversation to resume."""

    cwd: str | None = None
    """Working directory."""

    mode: SessionMode = "agent"
    """Session mode."""

    provider: str | None = None
    """Resolved provider name."""

    model: str | None = None
    """Resolved model name."""

    attachments: Sequence[AttachmentPart] = ()
    """Images and files sent with the prompt."""

    mentions: ParsedMentions | None = None
    """Structured references extracted from the prompt."""

    extra: dict[str, Any] = field(default_factory=dict)
    """Engine specific options."""


class CompletionEngine(Protocol):
    """Produces raw events for a turn.

    Raw events are dicts of the shape ``{"type": "stream_event" | "assistant" |
    "user" | "system" | "result" | "error", ...}``. Implementations raise
    ``EngineStreamError`` (with any captured stderr) for process or transport
    failures.
    """

    def stream(self, request: EngineRequest) -> AsyncIterator[dict[str, Any]]: ...
