"""Output channels that mirror a turn's chunks to other consumers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from agentstream.log import get_logger
from agentstream.streaming.chunks import ErrorChunk, TextDeltaChunk


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from agentstream.streaming.chunks import Chunk


logger = get_logger(__name__)


@runtime_checkable
class OutputChannel(Protocol):
    """Receives every chunk of a turn and its completion."""

    def on_chunk(self, chunk: Chunk) -> None: ...

    def on_tool_call(self, tool_name: str, input: dict[str, Any], output: Any) -> None: ...

    def on_error(self, error: ErrorChunk) -> None: ...

    def on_complete(self, session_token: str | None, stats: dict[str, Any]) -> None: ...


class LoggingChannel:
    """Logs everything, for debugging."""

    def __init__(self, prefix: str = "turn") -> None:
        self.prefix = prefix

    def on_chunk(self, chunk: Chunk) -> None:
        logger.debug("Chunk", channel=self.prefix, kind=chunk.chunk_kind)

    def on_tool_call(self, tool_name: str, input: dict[str, Any], output: Any) -> None:
        logger.info("Tool call", channel=self.prefix, tool=tool_name, input=input, output=output)

    def on_error(self, error: ErrorChunk) -> None:
        logger.error("Turn error", channel=self.prefix, category=error.category, error=error.error_text)

    def on_complete(self, session_token: str | None, stats: dict[str, Any]) -> None:
        logger.info("Turn complete", channel=self.prefix, session_token=session_token)


class CallbackChannel:
    """Forwards to optional plain callables."""

    def __init__(
        self,
        *,
        on_chunk: Callable[[Chunk], None] | None = None,
        on_tool_call: Callable[[str, dict[str, Any], Any], None] | None = None,
        on_error: Callable[[ErrorChunk], None] | None = None,
        on_complete: Callable[[str | None, dict[str, Any]], None] | None = None,
    ) -> None:
        self._on_chunk = on_chunk
        self._on_tool_call = on_tool_call
        self._on_error = on_error
        self._on_complete = on_complete

    def on_chunk(self, chunk: Chunk) -> None:
        if self._on_chunk:
            self._on_chunk(chunk)

    def on_tool_call(self, tool_name: str, input: dict[str, Any], output: Any) -> None:
        if self._on_tool_call:
            self._on_tool_call(tool_name, input, output)

    def on_error(self, error: ErrorChunk) -> None:
        if self._on_error:
            self._on_error(error)

    def on_complete(self, session_token: str | None, stats: dict[str, Any]) -> None:
        if self._on_complete:
            self._on_complete(session_token, stats)


class BufferChannel:
    """Buffers everything for later retrieval, e.g. by background runs."""

    def __init__(self) -> None:
        self.chunks: list[Chunk] = []
        self.tool_calls: list[tuple[str, dict[str, Any], Any]] = []
        self.errors: list[ErrorChunk] = []
        self.result: tuple[str | None, dict[str, Any]] | None = None

    def on_chunk(self, chunk: Chunk) -> None:
        self.chunks.append(chunk)

    def on_tool_call(self, tool_name: str, input: dict[str, Any], output: Any) -> None:
        self.tool_calls.append((tool_name, input, output))

    def on_error(self, error: ErrorChunk) -> None:
        self.errors.append(error)

    def on_complete(self, session_token: str | None, stats: dict[str, Any]) -> None:
        self.result = (session_token, stats)

    @property
    def final_text(self) -> str:
        """Concatenated text deltas."""
        return "".join(c.delta for c in self.chunks if isinstance(c, TextDeltaChunk))

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def clear(self) -> None:
        self.chunks.clear()
        self.tool_calls.clear()
        self.errors.clear()
        self.result = None


class CompositeChannel:
    """Fans out to several channels. A failing channel does not affect the others."""

    def __init__(self, channels: Sequence[OutputChannel]) -> None:
        self.channels = list(channels)

    def _each(self, method: str, *args: Any) -> None:
        for channel in self.channels:
            try:
                getattr(channel, method)(*args)
            except Exception:
                logger.exception("Output channel failed", channel=type(channel).__name__)

    def on_chunk(self, chunk: Chunk) -> None:
        self._each("on_chunk", chunk)

    def on_tool_call(self, tool_name: str, input: dict[str, Any], output: Any) -> None:
        self._each("on_tool_call", tool_name, input, output)

    def on_error(self, error: ErrorChunk) -> None:
        self._each("on_error", error)

    def on_complete(self, session_token: str | None, stats: dict[str, Any]) -> None:
        self._each("on_complete", session_token, stats)
