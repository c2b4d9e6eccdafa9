"""Folding prior conversation history into prompts."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from agentstream.log import get_logger
from agentstream.messaging import TextPart, ToolInvocationPart


if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentstream.messaging import Message
    from agentstream_config.prompts import UserProfile


logger = get_logger(__name__)

MAX_HISTORY_CHARS = 10_000
TOOL_SUMMARY_KEYS = {
    "Read": "file_path",
    "Edit": "file_path",
    "Write": "file_path",
    "Glob": "pattern",
}


def merge_unanswered_messages(messages: Sequence[Message], prompt: str) -> str:
    """Prepend user turns stranded after the last assistant reply to ``prompt``.

    When a generation is interrupted the provider rolls back to the last
    assistant message, so user messages sent in between would be lost.

    Args:
        messages: Stored history, not including the current message
        prompt: The current prompt
    """
    unanswered: list[str] = []
    for message in reversed(messages):
        if message.role == "assistant":
            break
        text = "\n".join(p.text for p in message.parts if isinstance(p, TextPart))
        if text.strip():
            unanswered.insert(0, text)
    if not unanswered:
        return prompt
    logger.info("Merging unanswered messages into prompt", count=len(unanswered))
    return "\n\n".join(unanswered) + f"\n\n{prompt}"


def _summarize_tool(part: ToolInvocationPart) -> str:
    tool_input: dict[str, Any] = part.input
    info = f"[Used {part.tool_name}"
    if part.tool_name == "Read" and (path := tool_input.get("file_path") or tool_input.get("file")):
        info += f": {path}"
    elif key := TOOL_SUMMARY_KEYS.get(part.tool_name):
        if value := tool_input.get(key):
            info += f": {value}"
    elif part.tool_name == "Grep" and (pattern := tool_input.get("pattern")):
        info += f': "{pattern}"'
    elif part.tool_name == "Bash" and (command := tool_input.get("command")):
        command = str(command)
        info += f": {command[:50]}{'...' if len(command) > 50 else ''}"  # noqa: PLR2004
    return info + "]"


def format_history(messages: Sequence[Message]) -> str:
    """Render history as ``User:`` / ``Assistant:`` blocks, including tool summaries."""
    blocks: list[str] = []
    for message in messages:
        texts = [p.text for p in message.parts if isinstance(p, TextPart) and p.text]
        if message.role == "user":
            if texts:
                blocks.append("User: " + "\n".join(texts))
            continue
        tools = [_summarize_tool(p) for p in message.parts if isinstance(p, ToolInvocationPart)]
        content = "\n".join(texts)
        if tools:
            content = f"{content}\n{' '.join(tools)}" if content else " ".join(tools)
        if content:
            blocks.append(f"Assistant: {content}")
    history = "\n\n".join(blocks)
    if len(history) > MAX_HISTORY_CHARS:
        history = "...(earlier messages truncated)...\n\n" + history[-MAX_HISTORY_CHARS:]
    return history


def build_offline_context(
    *,
    messages: Sequence[Message],
    prompt: str,
    cwd: str,
    model: str | None = None,
    project_path: str | None = None,
    user_profile: UserProfile | None = None,
    runtime_tools: Sequence[str] = (),
    agents_md: str | None = None,
) -> str:
    """Build a self-contained prompt for providers without server-side sessions.

    Such providers cannot resume a conversation, so the history, profile and
    environment are sent inline with every request.
    """
    sections = [
        "[CONTEXT]\n"
        f"You are a coding assistant in OFFLINE mode (model: {model or 'unknown'}).\n"
        f"Project: {project_path or cwd}\n"
        f"Working directory: {cwd}\n\n"
        "IMPORTANT: When using tools, use these EXACT parameter names:\n"
        '- Read: use "file_path" (not "file")\n'
        '- Write: use "file_path" and "content"\n'
        '- Edit: use "file_path", "old_string", "new_string"\n'
        '- Glob: use "pattern" (e.g. "**/*.ts") and optionally "path"\n'
        '- Grep: use "pattern" and optionally "path"\n'
        '- Bash: use "command"\n\n'
        "When asked about the project, use Glob to find files and Read to examine them.\n"
        "Be concise and helpful.\n"
        "[/CONTEXT]"
    ]
    if user_profile:
        profile = []
        if name := (user_profile.preferred_name or "").strip():
            profile.append(f"- Preferred name: {name}")
        if prefs := (user_profile.personal_preferences or "").strip():
            profile.append(f"- Personal preferences: {prefs}")
        if profile:
            sections.append("[USER PROFILE]\n" + "\n".join(profile) + "\n[/USER PROFILE]")
    if runtime_tools:
        tools = "\n".join(f"- {t}" for t in runtime_tools)
        sections.append(f"[RUNTIME]\nAvailable tools:\n{tools}\n[/RUNTIME]")
    if agents_md:
        sections.append(f"[AGENTS.MD]\n{agents_md}\n[/AGENTS.MD]")
    context = "\n\n".join(sections)
    history = format_history(messages)
    history_block = f"[CONVERSATION HISTORY]\n{history}\n[/CONVERSATION HISTORY]\n\n" if history else ""
    return f"{context}\n\n{history_block}[CURRENT REQUEST]\n{prompt}\n[/CURRENT REQUEST]"
