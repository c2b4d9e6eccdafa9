"""Tests for the turn pipeline."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from agentstream.exceptions import EngineStreamError, ProviderUnavailableError
from agentstream.messaging import ToolInvocationPart
from agentstream.readiness import ReadinessCache, StaticDescriptorStore
from agentstream.sessions import (
    ErrorCategory,
    ProviderSelection,
    SessionRegistry,
    StaticProviderResolver,
    TurnPipeline,
)
from agentstream.storage import MemoryMessageStore
from agentstream.streaming import BufferChannel
from agentstream.streaming.chunks import AskUserQuestionChunk, ErrorChunk, FinishChunk
from agentstream_config import HttpServerDescriptor
from conftest import (
    SESSION_ID,
    ScriptedEngine,
    assistant_text,
    assistant_tool_use,
    result_event,
    tool_result,
)


if TYPE_CHECKING:
    from agentstream.messaging import Message, Session
    from agentstream.permissions import PermissionDecision
    from agentstream.sessions import EngineRequest


def finish_count(chunks: list[Any]) -> int:
    return sum(isinstance(c, FinishChunk) for c in chunks)


def errors(chunks: list[Any]) -> list[ErrorChunk]:
    return [c for c in chunks if isinstance(c, ErrorChunk)]


class UnreachableStore(MemoryMessageStore):
    async def get_or_create(self, session_id: str, **defaults: Any) -> Session:
        raise OSError("disk full")


class ReadOnlyStore(MemoryMessageStore):
    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        raise OSError("read-only file system")


class UnavailableResolver:
    async def resolve(self, session: Session) -> ProviderSelection:
        raise ProviderUnavailableError("anthropic", "no credentials")


class TestBasicTurn:
    """Tests for the regular turn lifecycle."""

    async def test_turn_persists_messages(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        engine.add_script([assistant_text("Hello"), result_event("sdk-1")])
        channel = BufferChannel()

        handle = pipeline.submit_turn(SESSION_ID, "Hi", channel=channel)
        chunks = await handle.collect()
        result = await handle.wait()

        assert result.outcome == "completed"
        assert result.message
        assert result.message.text == "Hello"
        assert finish_count(chunks) == 1
        assert isinstance(chunks[-1], FinishChunk)
        session = await store.load_session(SESSION_ID)
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert session.stream_id is None
        assert session.resume_token == "sdk-1"
        assert channel.final_text == "Hello"
        assert channel.result
        assert channel.result[0] == "sdk-1"

    async def test_resume_token_passed_to_engine(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        await store.get_or_create(SESSION_ID, resume_token="sdk-0")
        engine.add_script([assistant_text("Hello"), result_event()])

        await pipeline.submit_turn(SESSION_ID, "Hi").wait()

        assert engine.requests[0].resume_token == "sdk-0"
        assert engine.requests[0].prompt == "Hi"

    async def test_duplicate_submission_not_stored_twice(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        engine.add_script([assistant_text("Hello"), result_event()])
        await pipeline.submit_turn(SESSION_ID, "Hi").wait()
        session = await store.load_session(SESSION_ID)
        # Drop the reply, leaving the user message as the last one
        await store.replace_messages(SESSION_ID, session.messages[:1])
        engine.add_script([assistant_text("Hello again"), result_event()])

        await pipeline.submit_turn(SESSION_ID, "Hi").wait()

        session = await store.load_session(SESSION_ID)
        assert [m.role for m in session.messages] == ["user", "assistant"]
        assert engine.requests[-1].prompt == "Hi"

    async def test_empty_response(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        engine.add_script([])

        handle = pipeline.submit_turn(SESSION_ID, "Hi")
        chunks = await handle.collect()
        result = await handle.wait()

        assert result.outcome == "errored"
        [error] = errors(chunks)
        assert error.category == ErrorCategory.EMPTY_RESPONSE
        assert finish_count(chunks) == 1
        session = await store.load_session(SESSION_ID)
        assert [m.role for m in session.messages] == ["user"]
        assert session.stream_id is None


class TestErrors:
    """Tests for failure paths."""

    async def test_provider_unavailable(
        self, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        async with TurnPipeline(
            engine=engine, store=store, providers=UnavailableResolver()
        ) as pipeline:
            handle = pipeline.submit_turn(SESSION_ID, "Hi")
            chunks = await handle.collect()
            result = await handle.wait()

        assert result.error
        assert result.error.category is ErrorCategory.PROVIDER_UNAVAILABLE
        assert [e.category for e in errors(chunks)] == ["PROVIDER_UNAVAILABLE"]
        assert finish_count(chunks) == 1
        assert engine.requests == []
        assert (await store.load_session(SESSION_ID)).stream_id is None

    async def test_expired_session_clears_resume_token(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        await store.get_or_create(SESSION_ID, resume_token="stale")
        failure = EngineStreamError(
            "Engine process exited with code 1",
            stderr="No conversation found with session ID stale",
        )
        engine.add_script([failure])

        handle = pipeline.submit_turn(SESSION_ID, "Hi")
        chunks = await handle.collect()
        result = await handle.wait()

        assert engine.requests[0].resume_token == "stale"
        assert result.error
        assert result.error.category is ErrorCategory.SESSION_EXPIRED
        assert [e.category for e in errors(chunks)] == ["SESSION_EXPIRED"]
        assert (await store.load_session(SESSION_ID)).resume_token is None

    async def test_in_band_provider_error(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        engine.add_script([
            {"type": "error", "error": {"type": "overloaded", "message": "Overloaded"}},
            assistant_text("never seen"),
        ])

        handle = pipeline.submit_turn(SESSION_ID, "Hi")
        chunks = await handle.collect()
        result = await handle.wait()

        assert result.outcome == "errored"
        assert [e.category for e in errors(chunks)] == ["OVERLOADED"]
        assert result.message is None

    async def test_unexpected_engine_exception(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        engine.add_script([assistant_text("partial"), ValueError("weird")])

        handle = pipeline.submit_turn(SESSION_ID, "Hi")
        chunks = await handle.collect()
        result = await handle.wait()

        assert [e.category for e in errors(chunks)] == ["UNKNOWN"]
        assert result.message
        assert result.message.text == "partial"

    async def test_plain_string_error_message(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        engine.add_script([{"type": "error", "error": "overloaded", "message": "Overloaded"}])

        chunks = await pipeline.submit_turn(SESSION_ID, "Hi").collect()

        assert [e.category for e in errors(chunks)] == ["OVERLOADED"]

    async def test_store_failure_before_generation(self, engine: ScriptedEngine) -> None:
        registry = SessionRegistry()
        async with TurnPipeline(
            engine=engine,
            store=UnreachableStore(),
            providers=StaticProviderResolver(ProviderSelection(provider="anthropic")),
            registry=registry,
        ) as pipeline:
            handle = pipeline.submit_turn(SESSION_ID, "Hi")
            chunks = await asyncio.wait_for(handle.collect(), 1)
            result = await handle.wait()

        assert result.outcome == "errored"
        [error] = errors(chunks)
        assert error.category == ErrorCategory.UNKNOWN
        assert "disk full" in error.error_text
        assert finish_count(chunks) == 1
        assert not registry.is_active(SESSION_ID)
        assert engine.requests == []

    async def test_store_failure_while_saving(self, engine: ScriptedEngine) -> None:
        store = ReadOnlyStore()
        engine.add_script([assistant_text("Hello"), result_event()])
        async with TurnPipeline(
            engine=engine,
            store=store,
            providers=StaticProviderResolver(ProviderSelection(provider="anthropic")),
        ) as pipeline:
            handle = pipeline.submit_turn(SESSION_ID, "Hi")
            chunks = await asyncio.wait_for(handle.collect(), 1)
            result = await handle.wait()

        assert result.message is None
        [error] = errors(chunks)
        assert "read-only file system" in error.error_text
        assert finish_count(chunks) == 1
        assert isinstance(chunks[-1], FinishChunk)
        assert (await store.load_session(SESSION_ID)).stream_id is None


class TestSupersede:
    """Tests for superseding and cancelling turns."""

    async def test_new_turn_supersedes_running_one(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        started = asyncio.Event()
        gate = asyncio.Event()

        async def block(request: EngineRequest) -> None:
            started.set()
            await gate.wait()

        engine.add_script([block])
        engine.add_script([assistant_text("Answer B"), result_event()])

        first = pipeline.submit_turn(SESSION_ID, "first question")
        await asyncio.wait_for(started.wait(), 1)
        second = pipeline.submit_turn(SESSION_ID, "second question")
        assert first.cancelled

        first_result = await first.wait()
        second_result = await second.wait()

        assert first_result.outcome == "cancelled"
        assert first_result.message is None
        assert second_result.outcome == "completed"
        session = await store.load_session(SESSION_ID)
        assert [m.role for m in session.messages] == ["user", "user", "assistant"]
        assert session.messages[0].text == "first question"
        assert session.messages[2].text == "Answer B"
        prompt = engine.requests[1].prompt
        assert "first question" in prompt
        assert prompt.endswith("second question")

    async def test_superseded_partial_reply_replaced(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        started = asyncio.Event()

        async def block(request: EngineRequest) -> None:
            started.set()
            await asyncio.Event().wait()

        engine.add_script([assistant_text("partial A"), block])
        engine.add_script([assistant_text("Answer B"), result_event()])

        first = pipeline.submit_turn(SESSION_ID, "question A")
        await asyncio.wait_for(started.wait(), 1)
        second = pipeline.submit_turn(SESSION_ID, "question B")
        first_result = await first.wait()
        await second.wait()

        assert first_result.superseded
        assert first_result.message
        assert first_result.message.text == "partial A"
        session = await store.load_session(SESSION_ID)
        assert [m.role for m in session.messages] == ["user", "user", "assistant"]
        assert [m.text for m in session.messages] == ["question A", "question B", "Answer B"]
        assert engine.requests[1].prompt == "question A\n\nquestion B"

    async def test_cancelled_reply_kept_for_next_turn(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        started = asyncio.Event()

        async def block(request: EngineRequest) -> None:
            started.set()
            await asyncio.Event().wait()

        engine.add_script([assistant_text("partial A"), block])
        engine.add_script([assistant_text("Answer B"), result_event()])

        first = pipeline.submit_turn(SESSION_ID, "question A")
        await asyncio.wait_for(started.wait(), 1)
        pipeline.cancel(SESSION_ID)
        first_result = await first.wait()
        await pipeline.submit_turn(SESSION_ID, "question B").wait()

        assert first_result.outcome == "cancelled"
        assert not first_result.superseded
        session = await store.load_session(SESSION_ID)
        assert [m.text for m in session.messages] == [
            "question A",
            "partial A",
            "question B",
            "Answer B",
        ]
        assert engine.requests[1].prompt == "question B"

    async def test_cancelled_before_generation(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        handle = pipeline.submit_turn(SESSION_ID, "Hi")
        pipeline.cancel(SESSION_ID)
        chunks = await handle.collect()
        result = await handle.wait()

        assert result.outcome == "cancelled"
        assert result.cancel_reason == "cancelled"
        assert engine.requests == []
        assert finish_count(chunks) == 1
        session = await store.load_session(SESSION_ID)
        assert [m.role for m in session.messages] == ["user"]
        assert session.stream_id is None

    async def test_cancel_persists_partial_output(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        reached = asyncio.Event()

        async def pause(request: EngineRequest) -> None:
            reached.set()
            await asyncio.Event().wait()

        engine.add_script([
            assistant_text("Looking"),
            assistant_tool_use("t1", "Read", {"file_path": "a.py"}),
            tool_result("t1", "contents"),
            pause,
        ])

        handle = pipeline.submit_turn(SESSION_ID, "Read it")
        await asyncio.wait_for(reached.wait(), 1)
        assert pipeline.cancel(SESSION_ID)
        chunks = await handle.collect()
        result = await handle.wait()

        assert result.outcome == "cancelled"
        assert finish_count(chunks) == 1
        assert not errors(chunks)
        session = await store.load_session(SESSION_ID)
        assert session.stream_id is None
        reply = session.messages[-1]
        assert reply.role == "assistant"
        assert reply.text == "Looking"
        [tool] = [p for p in reply.parts if isinstance(p, ToolInvocationPart)]
        assert tool.tool_name == "Read"
        assert tool.state == "result"
        assert engine.closed == 1

    async def test_cancel_is_per_session(
        self, pipeline: TurnPipeline, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        gates = {"a": asyncio.Event(), "b": asyncio.Event()}

        async def gated(request: EngineRequest) -> None:
            await gates[request.session_id].wait()

        for _ in range(2):
            engine.add_script([gated, assistant_text("done"), result_event()])

        handle_a = pipeline.submit_turn("a", "Hi")
        handle_b = pipeline.submit_turn("b", "Hi")
        await asyncio.sleep(0.05)
        pipeline.cancel("a")
        gates["b"].set()

        result_a = await handle_a.wait()
        result_b = await handle_b.wait()

        assert result_a.outcome == "cancelled"
        assert not handle_b.cancelled
        assert result_b.outcome == "completed"
        assert (await store.load_session("b")).messages[-1].text == "done"
        assert [m.role for m in (await store.load_session("a")).messages] == ["user"]

    async def test_shutdown_cancels_running_turns(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        started = asyncio.Event()

        async def block(request: EngineRequest) -> None:
            started.set()
            await asyncio.Event().wait()

        engine.add_script([block])
        handle = pipeline.submit_turn(SESSION_ID, "Hi")
        await asyncio.wait_for(started.wait(), 1)

        await pipeline.shutdown()

        assert handle.done
        assert (await handle.wait()).outcome == "cancelled"


class TestModes:
    """Tests for plan mode and interactive questions."""

    async def test_exit_plan_mode_ends_turn(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        engine.add_script([
            assistant_tool_use("p1", "ExitPlanMode", {"plan": "1. do it"}),
            tool_result("p1", "ok"),
            result_event(),
            assistant_text("should not appear"),
        ])

        handle = pipeline.submit_turn(SESSION_ID, "Plan it", mode="plan")
        chunks = await handle.collect()
        result = await handle.wait()

        assert result.outcome == "completed"
        assert finish_count(chunks) == 1
        assert result.message
        assert "should not appear" not in result.message.text
        assert any(
            isinstance(p, ToolInvocationPart) and p.tool_name == "ExitPlanMode"
            for p in result.message.parts
        )

    async def test_plan_mode_policy_reaches_engine(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        decisions: list[PermissionDecision] = []

        async def try_tools(request: EngineRequest) -> None:
            decisions.append(await request.can_use_tool("Bash", {"command": "ls"}, "b1"))
            decisions.append(
                await request.can_use_tool("Write", {"file_path": "PLAN.md", "content": "x"}, "w1")
            )

        engine.add_script([try_tools, assistant_text("ok"), result_event()])

        await pipeline.submit_turn(SESSION_ID, "Plan it", mode="plan").wait()

        assert [d.allowed for d in decisions] == [False, True]
        assert decisions[0].message == 'Tool "Bash" blocked in plan mode.'

    async def test_question_answered_through_pipeline(
        self, pipeline: TurnPipeline, engine: ScriptedEngine
    ) -> None:
        questions = [{"question": "Which one?", "options": ["A", "B"]}]
        decisions: list[PermissionDecision] = []

        async def ask(request: EngineRequest) -> None:
            tool_input = {"questions": questions}
            decisions.append(await request.can_use_tool("AskUserQuestion", tool_input, "q1"))

        engine.add_script([
            assistant_tool_use("q1", "AskUserQuestion", {"questions": questions}),
            ask,
            assistant_text("Going with A"),
            result_event(),
        ])

        handle = pipeline.submit_turn(SESSION_ID, "Choose")
        chunks = []
        async for chunk in handle:
            chunks.append(chunk)
            if isinstance(chunk, AskUserQuestionChunk):
                assert chunk.questions == questions
                pipeline.resolve_approval(chunk.tool_use_id, True, answers={"Which one?": "A"})
        result = await handle.wait()

        [decision] = decisions
        assert decision.allowed
        assert decision.updated_input == {"answers": {"Which one?": "A"}}
        assert result.message
        [part] = [p for p in result.message.parts if isinstance(p, ToolInvocationPart)]
        assert part.output == {"answers": {"Which one?": "A"}}
        assert finish_count(chunks) == 1


class TestServers:
    """Tests for the capability server hand-off."""

    async def test_unusable_servers_withheld(
        self, engine: ScriptedEngine, store: MemoryMessageStore
    ) -> None:
        broken = HttpServerDescriptor(name="broken", url="https://broken.example")
        good = HttpServerDescriptor(name="good", url="https://good.example")
        cache = ReadinessCache()
        cache.mark_working(broken.cache_key, False)
        engine.add_script([assistant_text("ok"), result_event()])

        async with TurnPipeline(
            engine=engine,
            store=store,
            providers=StaticProviderResolver(ProviderSelection(provider="anthropic", model="m")),
            readiness=cache,
            descriptors=StaticDescriptorStore([broken, good]),
        ) as pipeline:
            await pipeline.submit_turn(SESSION_ID, "Hi").wait()

        assert [s.name for s in engine.requests[0].servers] == ["good"]

    @pytest.mark.parametrize("offline", [True, False])
    async def test_offline_provider_drops_resume_token(
        self, engine: ScriptedEngine, store: MemoryMessageStore, offline: bool
    ) -> None:
        await store.get_or_create(SESSION_ID, resume_token="sdk-0")
        engine.add_script([assistant_text("ok"), result_event()])
        selection = ProviderSelection(provider="ollama", model="llama3", offline=offline)

        async with TurnPipeline(
            engine=engine, store=store, providers=StaticProviderResolver(selection)
        ) as pipeline:
            await pipeline.submit_turn(SESSION_ID, "Hi").wait()

        request = engine.requests[0]
        assert (request.resume_token is None) is offline
        assert request.provider == "ollama"
