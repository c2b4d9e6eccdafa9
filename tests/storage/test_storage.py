"""Tests for message storage, preview stats and the persistence writer."""

from __future__ import annotations

import pytest

from agentstream.exceptions import SessionNotFoundError
from agentstream.messaging import Message, TextPart, ToolInvocationPart
from agentstream.storage import MemoryMessageStore, PersistenceWriter, compute_preview_stats
from agentstream.streaming import MessageAccumulator


def user(text: str) -> Message:
    return Message(role="user", parts=[TextPart(text=text)])


def assistant(*tools: tuple[str, dict]) -> Message:
    parts = [
        ToolInvocationPart(tool_call_id=f"c{i}", tool_name=name, input=tool_input)
        for i, (name, tool_input) in enumerate(tools)
    ]
    return Message(role="assistant", parts=parts)


class TestMemoryMessageStore:
    """Tests for MemoryMessageStore."""

    async def test_unknown_session(self, store: MemoryMessageStore) -> None:
        with pytest.raises(SessionNotFoundError):
            await store.load_session("missing")

    async def test_get_or_create_keeps_existing(self, store: MemoryMessageStore) -> None:
        await store.get_or_create("s", cwd="/work")
        await store.append_message("s", user("hi"))
        session = await store.get_or_create("s", cwd="/elsewhere")
        assert session.cwd == "/work"
        assert len(session.messages) == 1

    async def test_returns_copies(self, store: MemoryMessageStore) -> None:
        await store.get_or_create("s")
        session = await store.load_session("s")
        session.messages.append(user("not stored"))
        assert (await store.load_session("s")).messages == []

    async def test_cleanup_on_exit(self) -> None:
        async with MemoryMessageStore() as store:
            await store.get_or_create("s")
        with pytest.raises(SessionNotFoundError):
            await store.load_session("s")


class TestPreviewStats:
    """Tests for compute_preview_stats."""

    def test_counts_file_changes(self) -> None:
        messages = [
            user("Fix the bug"),
            assistant(
                ("Edit", {"file_path": "a.py", "old_string": "x", "new_string": "x\ny\nz"}),
                ("Write", {"file_path": "b.py", "content": "1\n2"}),
                ("Read", {"file_path": "c.py"}),
            ),
        ]
        [entry] = compute_preview_stats(messages)["inputs"]
        assert entry["index"] == 1
        assert entry["mode"] == "agent"
        assert entry["file_count"] == 2
        assert entry["additions"] == 4
        assert entry["deletions"] == 0

    def test_deletions(self) -> None:
        messages = [
            user("shrink"),
            assistant(("Edit", {"file_path": "a.py", "old_string": "a\nb\nc", "new_string": "a"})),
        ]
        [entry] = compute_preview_stats(messages)["inputs"]
        assert entry["deletions"] == 2
        assert entry["additions"] == 0

    def test_mode_switches(self) -> None:
        messages = [
            user("hello"),
            user("/plan"),
            user("keep planning"),
            user("/agent do it"),
            user("go"),
            assistant(("ExitPlanMode", {"plan": "..."})),
        ]
        modes = [entry["mode"] for entry in compute_preview_stats(messages)["inputs"]]
        assert modes == ["agent", "plan", "plan", "agent", "plan"]

    def test_content_truncated(self) -> None:
        [entry] = compute_preview_stats([user("x" * 100)])["inputs"]
        assert entry["content"] == "x" * 60


class TestPersistenceWriter:
    """Tests for PersistenceWriter."""

    async def test_flush_appends_assistant_message(self, store: MemoryMessageStore) -> None:
        await store.get_or_create("s")
        await store.append_message("s", user("hi"))
        await store.set_stream_id("s", "stream-1")
        accumulator = MessageAccumulator()
        accumulator.text_buffer = "partial answer"
        accumulator.metadata = {"sessionId": "sdk-1"}

        message = await PersistenceWriter(store).flush("s", accumulator, "cancelled")

        assert message
        assert message.text == "partial answer"
        session = await store.load_session("s")
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.stream_id is None
        assert session.resume_token == "sdk-1"
        assert len(session.preview_stats["inputs"]) == 1

    async def test_nothing_produced_still_clears_stream_id(
        self, store: MemoryMessageStore
    ) -> None:
        await store.get_or_create("s")
        await store.set_stream_id("s", "stream-1")

        message = await PersistenceWriter(store).flush("s", MessageAccumulator(), "errored")

        assert message is None
        session = await store.load_session("s")
        assert session.stream_id is None
        assert session.messages == []

    async def test_clear_resume_token(self, store: MemoryMessageStore) -> None:
        await store.get_or_create("s", resume_token="old")
        accumulator = MessageAccumulator()
        accumulator.text_buffer = "text"
        accumulator.metadata = {"sessionId": "new"}

        await PersistenceWriter(store).flush(
            "s", accumulator, "errored", clear_resume_token=True
        )

        assert (await store.load_session("s")).resume_token is None
