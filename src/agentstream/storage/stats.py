"""Per-input preview statistics derived from a message list."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from agentstream.messaging import ToolInvocationPart


if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentstream.messaging import Message


PREVIEW_CONTENT_LENGTH = 60


@dataclass
class PreviewInput:
    """Statistics for one user input and the assistant replies that followed it."""

    message_id: str
    index: int
    content: str
    mode: str
    file_count: int = 0
    additions: int = 0
    deletions: int = 0


def _line_count(text: Any) -> int:
    return len(str(text or "").split("\n"))


def _mode_switch(content: str) -> str | None:
    command = content.strip().lower()
    for mode in ("plan", "agent"):
        if command == f"/{mode}" or command.startswith(f"/{mode} "):
            return mode
    return None


def compute_preview_stats(messages: Sequence[Message], mode: str = "agent") -> dict[str, Any]:
    """Compute preview stats for every user input in ``messages``.

    Mode switches are detected from ``/plan`` and ``/agent`` commands, and a
    reply that calls ``ExitPlanMode`` counts as a plan-mode response. File
    changes are counted from ``Edit`` and ``Write`` tool inputs.
    """
    inputs: list[PreviewInput] = []
    current_mode = mode or "agent"
    for i, message in enumerate(messages):
        if message.role != "user":
            continue
        content = message.first_text or ""
        current_mode = _mode_switch(content) or current_mode
        files: set[str] = set()
        additions = deletions = 0
        plan_response = False
        for reply in messages[i + 1 :]:
            if reply.role == "user":
                break
            for part in reply.parts:
                if not isinstance(part, ToolInvocationPart):
                    continue
                if part.tool_name == "ExitPlanMode":
                    plan_response = True
                if part.tool_name not in ("Edit", "Write"):
                    continue
                if file_path := part.input.get("file_path"):
                    files.add(str(file_path))
                if part.tool_name == "Edit":
                    diff = _line_count(part.input.get("new_string")) - _line_count(
                        part.input.get("old_string")
                    )
                    if diff > 0:
                        additions += diff
                    else:
                        deletions -= diff
                elif part.input.get("content"):
                    additions += _line_count(part.input["content"])
        inputs.append(
            PreviewInput(
                message_id=message.message_id,
                index=len(inputs) + 1,
                content=content[:PREVIEW_CONTENT_LENGTH],
                mode="plan" if plan_response else current_mode,
                file_count=len(files),
                additions=additions,
                deletions=deletions,
            )
        )
    return {"inputs": [asdict(i) for i in inputs]}
