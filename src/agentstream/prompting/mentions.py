"""Inline mention syntax.

Mentions have the form ``@[kind:payload]``. Agent, skill and tool mentions are
collected and removed from the text. File and folder mentions are replaced by
their path. Diff and quote references are decoded and prepended as context
blocks.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
import re


MENTION_PATTERN = re.compile(r"@\[(file|folder|skill|agent|tool):([^\]]+)\]")
STRIPPED_MENTION_PATTERN = re.compile(r"@\[(?:agent|skill|tool):[^\]]+\]")
DIFF_PATTERN = re.compile(r"@\[diff-code:([^\]]+)\]")
QUOTE_PATTERN = re.compile(r"@\[quote:([^\]]+)\]")
PATH_PATTERN = re.compile(r"@\[(?:file|folder):(?:local|external):([^\]]+)\]")
SERVER_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
TOOL_ID_PATTERN = re.compile(r"^mcp__[a-zA-Z0-9_-]+__[a-zA-Z0-9_-]+$")


@dataclass
class ParsedMentions:
    """Result of expanding the mentions of one prompt."""

    cleaned_prompt: str
    agents: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    folders: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)

    @property
    def final_prompt(self) -> str:
        """Prompt with agent and skill instructions folded in."""
        prompt = self.cleaned_prompt
        skills = '", "'.join(self.skills)
        agents = ", ".join(self.agents)
        if not prompt.strip():
            if self.agents and self.skills:
                return (
                    f'Use the {agents} agent(s) and invoke the "{skills}" skill(s) '
                    "using the Skill tool for this task."
                )
            if self.agents:
                return f"Use the {agents} agent(s) for this task."
            if self.skills:
                return f'Invoke the "{skills}" skill(s) using the Skill tool for this task.'
            return prompt
        if self.skills:
            return f'{prompt}\n\nUse the "{skills}" skill(s) for this task.'
        return prompt


def decode_base64_text(value: str) -> str:
    """Decode UTF-8 text from base64, returning the input unchanged if it is not base64."""
    try:
        return base64.b64decode(value, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return value


def render_diff_reference(content: str) -> str:
    """Render ``path:line:preview:b64text[:b64comment]`` as a context block."""
    parts = content.split(":")
    if len(parts) < 4:  # noqa: PLR2004
        return content
    file_path, line_number, preview, encoded_text = parts[:4]
    encoded_comment = parts[4] if len(parts) > 4 else ""  # noqa: PLR2004
    full_text = decode_base64_text(encoded_text) if encoded_text else preview
    comment = decode_base64_text(encoded_comment) if encoded_comment else ""
    file_name = file_path.rsplit("/", 1)[-1] or file_path
    line_info = f" (line {line_number})" if line_number and line_number != "0" else ""
    if comment:
        return (
            f"[Code Review Comment on {file_name}{line_info}]\n"
            f'User\'s comment: "{comment}"\n'
            f"Referenced code:\n```\n{full_text}\n```"
        )
    return f"[Code Reference from {file_name}{line_info}]\n```\n{full_text}\n```"


def render_quote(content: str) -> str:
    """Render ``preview:b64text`` as a quoted block."""
    preview, sep, encoded = content.partition(":")
    if not sep:
        return f'[Quoted text]\n"{content}"'
    text = decode_base64_text(encoded) if encoded else preview
    return f'[Quoted text]\n"{text}"'


def _tool_hint(name: str) -> str:
    if name.startswith("mcp__"):
        return f"Use the {name} tool for this request."
    return f"Use tools from the {name} MCP server for this request."


def parse_mentions(prompt: str) -> ParsedMentions:
    """Expand all mentions of ``prompt``."""
    result = ParsedMentions(cleaned_prompt="")
    for match in MENTION_PATTERN.finditer(prompt):
        kind, name = match.groups()
        match kind:
            case "agent":
                result.agents.append(name)
            case "skill":
                result.skills.append(name)
            case "file":
                result.files.append(name)
            case "folder":
                result.folders.append(name)
            case "tool" if SERVER_NAME_PATTERN.match(name) or TOOL_ID_PATTERN.match(name):
                result.tools.append(name)

    cleaned = STRIPPED_MENTION_PATTERN.sub("", prompt)
    diff_contexts = [render_diff_reference(m) for m in DIFF_PATTERN.findall(cleaned)]
    cleaned = DIFF_PATTERN.sub("", cleaned)
    quote_contexts = [render_quote(m) for m in QUOTE_PATTERN.findall(cleaned)]
    cleaned = QUOTE_PATTERN.sub("", cleaned).strip()

    context_parts = []
    if diff_contexts:
        context_parts.append("\n\n".join(diff_contexts))
    if quote_contexts:
        context_parts.append("\n\n".join(quote_contexts))
    if context_parts:
        cleaned = "\n\n".join(context_parts) + f"\n\n{cleaned}"

    cleaned = PATH_PATTERN.sub(r"\1", cleaned)
    if result.tools:
        hints = " ".join(_tool_hint(t) for t in result.tools)
        cleaned = f"{hints}\n\n{cleaned}"
    result.cleaned_prompt = cleaned
    return result
