"""Tests for history folding."""

from __future__ import annotations

from agentstream.messaging import Message, TextPart, ToolInvocationPart
from agentstream.prompting import build_offline_context, format_history, merge_unanswered_messages
from agentstream_config import UserProfile


def user(text: str) -> Message:
    return Message(role="user", parts=[TextPart(text=text)])


def assistant(text: str, *tools: ToolInvocationPart) -> Message:
    return Message(role="assistant", parts=[TextPart(text=text), *tools])


class TestMergeUnanswered:
    """Tests for merge_unanswered_messages."""

    def test_nothing_stranded(self) -> None:
        history = [user("a"), assistant("b")]
        assert merge_unanswered_messages(history, "c") == "c"

    def test_stranded_turns_prepended_in_order(self) -> None:
        history = [user("a"), assistant("b"), user("first"), user("second")]
        assert merge_unanswered_messages(history, "now") == "first\n\nsecond\n\nnow"

    def test_empty_history(self) -> None:
        assert merge_unanswered_messages([], "hi") == "hi"

    def test_whitespace_messages_skipped(self) -> None:
        history = [assistant("ok"), user("   "), user("real")]
        assert merge_unanswered_messages(history, "p") == "real\n\np"


class TestFormatHistory:
    """Tests for history rendering."""

    def test_tool_summaries(self) -> None:
        read = ToolInvocationPart(tool_call_id="1", tool_name="Read", input={"file_path": "a.py"})
        bash = ToolInvocationPart(tool_call_id="2", tool_name="Bash", input={"command": "ls"})
        text = format_history([user("hi"), assistant("done", read, bash)])
        assert text == "User: hi\n\nAssistant: done\n[Used Read: a.py] [Used Bash: ls]"

    def test_truncation(self) -> None:
        text = format_history([user("x" * 20_000)])
        assert text.startswith("...(earlier messages truncated)...")
        assert len(text) < 10_100  # noqa: PLR2004

    def test_offline_context(self) -> None:
        context = build_offline_context(
            messages=[user("hi"), assistant("hello")],
            prompt="next",
            cwd="/work",
            model="qwen",
            user_profile=UserProfile(preferred_name="Sam"),
        )
        assert "OFFLINE mode (model: qwen)" in context
        assert "- Preferred name: Sam" in context
        assert "[CONVERSATION HISTORY]\nUser: hi\n\nAssistant: hello" in context
        assert context.endswith("[CURRENT REQUEST]\nnext\n[/CURRENT REQUEST]")
