"""Convert raw completion engine events into normalized chunks.

The engine emits loosely structured dict events: partial ``stream_event``
deltas, complete ``assistant`` and ``user`` messages, ``system`` notices and
one final ``result``. Content usually arrives twice (streamed, then again in
the complete message), so the transformer tracks what it already emitted.
"""

from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import anyenv

from agentstream.log import get_logger
from agentstream.streaming.chunks import (
    CompactChunk,
    FinishChunk,
    FinishStepChunk,
    MessageMetadataChunk,
    ReasoningDeltaChunk,
    ReasoningEndChunk,
    ReasoningStartChunk,
    SessionInitChunk,
    StartChunk,
    StartStepChunk,
    TaskNotificationChunk,
    TextDeltaChunk,
    TextEndChunk,
    TextStartChunk,
    ToolInputAvailableChunk,
    ToolInputDeltaChunk,
    ToolInputStartChunk,
    ToolOutputAvailableChunk,
    ToolOutputErrorChunk,
)
from agentstream.utils.time_utils import elapsed_ms


if TYPE_CHECKING:
    from collections.abc import Iterator

    from agentstream.streaming.chunks import Chunk


logger = get_logger(__name__)

KNOWN_SERVER_STATUSES = frozenset({"connected", "failed", "pending", "needs-auth"})
OUTPUT_FILE_PATTERN = re.compile(r"Output is being written to: (/[^\n\r]+)")
THINKING_STREAMED = "thinking-streamed"


def _gen_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid4().hex[:5]}"


def make_composite_id(original_id: str, parent_id: str | None) -> str:
    """Build ``parent:child`` ids for calls made inside a nested agent."""
    return f"{parent_id}:{original_id}" if parent_id else original_id


def _parse_tool_input(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = anyenv.load_json(raw)
    except anyenv.JsonLoadError as e:
        # Stream may have been interrupted mid-JSON
        logger.warning("Failed to parse tool input JSON", error=str(e), partial=raw[:120])
        return {"_raw": raw, "_parseError": True}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def _extract_output_file(content: Any) -> str | None:
    texts: list[str] = []
    if isinstance(content, str):
        texts.append(content)
    elif isinstance(content, list):
        texts.extend(
            item["text"]
            for item in content
            if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
        )
    for text in texts:
        if match := OUTPUT_FILE_PATTERN.search(text):
            return match.group(1).strip()
    return None


class StreamTransformer:
    """Stateful mapper from raw engine events to chunks, one instance per turn."""

    def __init__(self, *, emit_message_uuid: bool = False) -> None:
        self.emit_message_uuid = emit_message_uuid
        self._started = False
        self._start_time: float | None = None
        self._text_id: str | None = None
        self._text_started = False
        self._last_text_id: str | None = None
        self._tool_call_id: str | None = None
        self._tool_name: str | None = None
        self._tool_original_id: str | None = None
        self._tool_input = ""
        self._emitted_ids: set[str] = set()
        self._parent_tool_use_id: str | None = None
        self._id_mapping: dict[str, str] = {}
        self._bash_commands: dict[str, str] = {}
        self._compact_id: str | None = None
        self._compact_counter = 0
        self._thinking_id: str | None = None
        self._in_thinking = False
        self._last_call_input_tokens = 0
        self._last_call_output_tokens = 0

    def resolve_call_id(self, original_id: str) -> str:
        """Map a provider tool_use id to the id used in emitted chunks."""
        return self._id_mapping.get(original_id, original_id)

    def _end_text_block(self) -> Iterator[Chunk]:
        if self._text_started and self._text_id:
            yield TextEndChunk(id=self._text_id)
            self._last_text_id = self._text_id
            self._text_started = False
            self._text_id = None

    def _end_tool_input(self) -> Iterator[Chunk]:
        if not self._tool_call_id:
            return
        self._emitted_ids.add(self._tool_call_id)
        parsed = _parse_tool_input(self._tool_input)
        if self._tool_name == "Bash" and self._tool_original_id and parsed.get("command"):
            self._bash_commands[self._tool_original_id] = str(parsed["command"])
        yield ToolInputAvailableChunk(
            tool_call_id=self._tool_call_id,
            tool_name=self._tool_name or "unknown",
            input=parsed,
        )
        self._tool_call_id = None
        self._tool_name = None
        self._tool_original_id = None
        self._tool_input = ""

    def _start_text(self) -> Iterator[Chunk]:
        self._text_id = _gen_id("text")
        self._text_started = True
        yield TextStartChunk(id=self._text_id)

    def transform(self, msg: dict[str, Any]) -> Iterator[Chunk]:  # noqa: PLR0912
        """Map one raw engine event to zero or more chunks."""
        # Only update when explicitly present, nested agent messages carry it
        if "parent_tool_use_id" in msg:
            self._parent_tool_use_id = msg["parent_tool_use_id"]

        if not self._started:
            self._started = True
            self._start_time = time.monotonic()
            yield StartChunk()
            yield StartStepChunk()

        match msg.get("type"):
            case "stream_event":
                if event := msg.get("event"):
                    yield from self._handle_stream_event(event)
            case "assistant":
                yield from self._handle_assistant(msg)
            case "user":
                yield from self._handle_user(msg)
            case "system":
                yield from self._handle_system(msg)
            case "result":
                yield from self._handle_result(msg)
            case other:
                logger.debug("Ignoring engine event", event_type=other)

    def _handle_stream_event(self, event: dict[str, Any]) -> Iterator[Chunk]:  # noqa: PLR0912
        event_type = event.get("type")
        block = event.get("content_block") or {}
        delta = event.get("delta") or {}

        if event_type == "message_start":
            self._thinking_id = None
            self._in_thinking = False
            usage = (event.get("message") or {}).get("usage") or {}
            if usage.get("input_tokens"):
                self._last_call_input_tokens = usage["input_tokens"]

        if event_type == "content_block_start" and block.get("type") == "text":
            yield from self._end_text_block()
            yield from self._end_tool_input()
            yield from self._start_text()

        if event_type == "content_block_delta" and delta.get("type") == "text_delta":
            if not self._text_started:
                yield from self._end_tool_input()
                yield from self._start_text()
            assert self._text_id
            yield TextDeltaChunk(id=self._text_id, delta=delta.get("text") or "")

        if event_type == "content_block_stop":
            if self._text_started:
                yield from self._end_text_block()
            if self._tool_call_id:
                yield from self._end_tool_input()

        if event_type == "content_block_start" and block.get("type") == "tool_use":
            yield from self._end_text_block()
            yield from self._end_tool_input()
            original_id = block.get("id") or _gen_id("tool")
            self._tool_call_id = make_composite_id(original_id, self._parent_tool_use_id)
            self._tool_name = block.get("name") or "unknown"
            self._tool_original_id = original_id
            self._tool_input = ""
            self._id_mapping[original_id] = self._tool_call_id
            yield ToolInputStartChunk(tool_call_id=self._tool_call_id, tool_name=self._tool_name)

        if delta.get("type") == "input_json_delta" and self._tool_call_id:
            partial = delta.get("partial_json") or ""
            self._tool_input += partial
            yield ToolInputDeltaChunk(tool_call_id=self._tool_call_id, input_text_delta=partial)

        if event_type == "content_block_start" and block.get("type") == "thinking":
            self._thinking_id = _gen_id("thinking")
            self._in_thinking = True
            # The complete assistant message may arrive before the block stops
            self._emitted_ids.add(THINKING_STREAMED)
            yield ReasoningStartChunk(id=self._thinking_id)

        if delta.get("type") == "thinking_delta" and self._thinking_id and self._in_thinking:
            yield ReasoningDeltaChunk(id=self._thinking_id, delta=str(delta.get("thinking") or ""))

        if event_type == "content_block_stop" and self._in_thinking and self._thinking_id:
            yield ReasoningEndChunk(id=self._thinking_id)
            self._emitted_ids.add(self._thinking_id)
            self._thinking_id = None
            self._in_thinking = False

        if event_type == "message_delta":
            usage = event.get("usage") or {}
            if usage.get("output_tokens"):
                self._last_call_output_tokens = usage["output_tokens"]

    def _handle_assistant(self, msg: dict[str, Any]) -> Iterator[Chunk]:
        content = (msg.get("message") or {}).get("content") or []
        for block in content:
            match block.get("type"):
                case "thinking" if block.get("thinking"):
                    if THINKING_STREAMED in self._emitted_ids:
                        continue
                    self._emitted_ids.add(THINKING_STREAMED)
                    thinking_id = _gen_id("thinking")
                    yield ReasoningStartChunk(id=thinking_id)
                    yield ReasoningDeltaChunk(id=thinking_id, delta=block["thinking"])
                    yield ReasoningEndChunk(id=thinking_id)
                case "text":
                    yield from self._end_tool_input()
                    # Already streamed via stream_event deltas
                    if self._text_started:
                        continue
                    text_id = _gen_id("text")
                    yield TextStartChunk(id=text_id)
                    yield TextDeltaChunk(id=text_id, delta=block.get("text") or "")
                    yield TextEndChunk(id=text_id)
                    self._last_text_id = text_id
                case "tool_use":
                    yield from self._end_text_block()
                    yield from self._end_tool_input()
                    block_id = block.get("id") or _gen_id("tool")
                    composite_id = make_composite_id(block_id, self._parent_tool_use_id)
                    if block_id in self._emitted_ids or composite_id in self._emitted_ids:
                        continue
                    self._emitted_ids.add(block_id)
                    self._emitted_ids.add(composite_id)
                    self._id_mapping[block_id] = composite_id
                    tool_input = block.get("input") or {}
                    if block.get("name") == "Bash" and tool_input.get("command"):
                        self._bash_commands[block_id] = str(tool_input["command"])
                    yield ToolInputAvailableChunk(
                        tool_call_id=composite_id,
                        tool_name=block.get("name") or "unknown",
                        input=tool_input,
                    )

    def _handle_user(self, msg: dict[str, Any]) -> Iterator[Chunk]:
        content = (msg.get("message") or {}).get("content")
        if not isinstance(content, list):
            return
        for block in content:
            if block.get("type") != "tool_result":
                continue
            original_id = block.get("tool_use_id") or ""
            call_id = self.resolve_call_id(original_id)
            raw_content = block.get("content")
            if block.get("is_error"):
                yield ToolOutputErrorChunk(tool_call_id=call_id, error_text=str(raw_content))
                continue
            output = msg.get("tool_use_result")
            if not output and isinstance(raw_content, str):
                try:
                    parsed = anyenv.load_json(raw_content)
                except anyenv.JsonLoadError:
                    parsed = None
                if isinstance(parsed, dict | list):
                    output = parsed
            output = output or raw_content
            if isinstance(output, dict) and (task_id := output.get("backgroundTaskId")):
                command = self._bash_commands.get(original_id)
                if command:
                    summary = command if len(command) <= 60 else command[:57] + "..."  # noqa: PLR2004
                else:
                    summary = f"Background task {task_id}"
                yield TaskNotificationChunk(
                    task_id=str(task_id),
                    status="running",
                    output_file=_extract_output_file(raw_content),
                    summary=summary,
                    command=command,
                )
            yield ToolOutputAvailableChunk(tool_call_id=call_id, output=output)

    def _handle_system(self, msg: dict[str, Any]) -> Iterator[Chunk]:
        match msg.get("subtype"):
            case "init":
                servers = [
                    {
                        "name": s.get("name"),
                        "status": s.get("status") if s.get("status") in KNOWN_SERVER_STATUSES else "pending",
                        **({"error": s["error"]} if s.get("error") else {}),
                    }
                    for s in msg.get("mcp_servers") or []
                ]
                yield SessionInitChunk(
                    tools=list(msg.get("tools") or []),
                    mcp_servers=servers,
                    plugins=list(msg.get("plugins") or []),
                    skills=list(msg.get("skills") or []),
                )
            case "status" if msg.get("status") == "compacting":
                self._compact_id = f"compact-{int(time.time() * 1000)}-{self._compact_counter}"
                self._compact_counter += 1
                yield CompactChunk(tool_call_id=self._compact_id, state="input-streaming")
            case "compact_boundary" if self._compact_id:
                yield CompactChunk(tool_call_id=self._compact_id, state="output-available")
                self._compact_id = None
            case "task_notification":
                yield TaskNotificationChunk(
                    task_id=str(msg.get("task_id")),
                    status=str(msg.get("status")),
                    output_file=msg.get("output_file"),
                    summary=msg.get("summary"),
                )
            case _:
                pass

    def _handle_result(self, msg: dict[str, Any]) -> Iterator[Chunk]:
        yield from self._end_text_block()
        yield from self._end_tool_input()
        usage = msg.get("usage") or {}
        input_tokens = usage.get("input_tokens")
        output_tokens = usage.get("output_tokens")
        model_usage = None
        if raw_usage := msg.get("modelUsage"):
            model_usage = {
                model: {
                    "inputTokens": u.get("inputTokens") or 0,
                    "outputTokens": u.get("outputTokens") or 0,
                    "cacheReadInputTokens": u.get("cacheReadInputTokens") or 0,
                    "cacheCreationInputTokens": u.get("cacheCreationInputTokens") or 0,
                    "costUSD": u.get("costUSD") or 0,
                }
                for model, u in raw_usage.items()
            }
        metadata: dict[str, Any] = {
            "sessionId": msg.get("session_id"),
            "inputTokens": input_tokens,
            "outputTokens": output_tokens,
            "totalTokens": input_tokens + output_tokens if input_tokens and output_tokens else None,
            "totalCostUsd": msg.get("total_cost_usd"),
            "durationMs": elapsed_ms(self._start_time) if self._start_time is not None else None,
            "resultSubtype": msg.get("subtype") or "success",
            "finalTextId": self._last_text_id,
            "modelUsage": model_usage,
            "lastCallInputTokens": self._last_call_input_tokens or None,
            "lastCallOutputTokens": self._last_call_output_tokens or None,
        }
        if self.emit_message_uuid:
            metadata["sdkMessageUuid"] = msg.get("uuid")
        metadata = {k: v for k, v in metadata.items() if v is not None}
        yield MessageMetadataChunk(metadata=metadata)
        yield FinishStepChunk()
        yield FinishChunk(metadata=metadata)
