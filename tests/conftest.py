"""Test configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import pytest

from agentstream.permissions import ToolPermissionNegotiator
from agentstream.readiness import ReadinessCache, ReadinessEventBus
from agentstream.sessions import (
    ProviderSelection,
    SessionRegistry,
    StaticProviderResolver,
    TurnPipeline,
)
from agentstream.storage import MemoryMessageStore
from agentstream_config import ReadinessConfig, SessionConfig


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from agentstream.sessions import EngineRequest


SESSION_ID = "tests-session-id"


def assistant_text(text: str, *, msg_id: str = "msg_1") -> dict[str, Any]:
    """Complete assistant message with a single text block."""
    return {
        "type": "assistant",
        "message": {"id": msg_id, "content": [{"type": "text", "text": text}]},
    }


def assistant_tool_use(tool_id: str, name: str, tool_input: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "assistant",
        "message": {
            "content": [{"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}]
        },
    }


def tool_result(tool_id: str, content: Any, *, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "user",
        "message": {
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": tool_id,
                    "content": content,
                    "is_error": is_error,
                }
            ]
        },
    }


def result_event(session_id: str = SESSION_ID, **extra: Any) -> dict[str, Any]:
    return {
        "type": "result",
        "subtype": "success",
        "session_id": session_id,
        "usage": {"input_tokens": 10, "output_tokens": 5},
        "total_cost_usd": 0.01,
        **extra,
    }


type ScriptStep = dict[str, Any] | asyncio.Event | BaseException | Callable[
    [EngineRequest], Awaitable[None]
]


class ScriptedEngine:
    """Completion engine replaying one script per ``stream`` call.

    Steps are raw events (yielded), events (awaited), exceptions (raised) or
    coroutine functions receiving the request (awaited).
    """

    def __init__(self, *scripts: list[ScriptStep]) -> None:
        self.scripts = list(scripts)
        self.requests: list[EngineRequest] = []
        self.closed = 0

    def add_script(self, script: list[ScriptStep]) -> None:
        self.scripts.append(script)

    async def stream(self, request: EngineRequest) -> AsyncIterator[dict[str, Any]]:
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else []
        try:
            for step in script:
                match step:
                    case dict():
                        yield step
                    case asyncio.Event():
                        await step.wait()
                    case BaseException():
                        raise step
                    case _:
                        await step(request)
        finally:
            self.closed += 1


class FakeTool:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeClient:
    """Stands in for a FastMCP client."""

    def __init__(self, tools: list[str] | None = None, *, error: Exception | None = None, delay: float = 0):
        self.tools = tools or []
        self.error = error
        self.delay = delay

    async def __aenter__(self) -> FakeClient:
        if self.error:
            raise self.error
        return self

    async def __aexit__(self, *exc: object) -> None:
        pass

    async def list_tools(self) -> list[FakeTool]:
        if self.delay:
            await asyncio.sleep(self.delay)
        return [FakeTool(name) for name in self.tools]


@pytest.fixture
def readiness_config() -> ReadinessConfig:
    """Readiness config with instant retries."""
    return ReadinessConfig(retry_delays=[0.0, 0.0, 0.0], http_timeout=0.5, stdio_timeout=0.5)


@pytest.fixture
def bus() -> ReadinessEventBus:
    return ReadinessEventBus()


@pytest.fixture
def cache() -> ReadinessCache:
    return ReadinessCache()


@pytest.fixture
def store() -> MemoryMessageStore:
    return MemoryMessageStore()


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture
def negotiator() -> ToolPermissionNegotiator:
    return ToolPermissionNegotiator(approval_timeout=0.2)


@pytest.fixture
async def pipeline(
    engine: ScriptedEngine,
    store: MemoryMessageStore,
    negotiator: ToolPermissionNegotiator,
    cache: ReadinessCache,
) -> AsyncIterator[TurnPipeline]:
    """Turn pipeline over in-memory collaborators."""
    pipeline = TurnPipeline(
        engine=engine,
        store=store,
        providers=StaticProviderResolver(ProviderSelection(provider="anthropic", model="test")),
        registry=SessionRegistry(),
        negotiator=negotiator,
        readiness=cache,
        config=SessionConfig(approval_timeout=0.2),
    )
    async with pipeline:
        yield pipeline
