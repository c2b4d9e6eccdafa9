"""Prompt assembly: mentions, stranded turns and system prompt sections."""

from __future__ import annotations

from agentstream.prompting.builder import PromptBuilder, RuntimeTool, SystemPrompt
from agentstream.prompting.history import (
    build_offline_context,
    format_history,
    merge_unanswered_messages,
)
from agentstream.prompting.mentions import ParsedMentions, parse_mentions

__all__ = [
    "ParsedMentions",
    "PromptBuilder",
    "RuntimeTool",
    "SystemPrompt",
    "build_offline_context",
    "format_history",
    "merge_unanswered_messages",
    "parse_mentions",
]
