"""In-memory message store."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Self

from agentstream.exceptions import SessionNotFoundError
from agentstream.log import get_logger
from agentstream.messaging import Session


if TYPE_CHECKING:
    from types import TracebackType

    from agentstream.messaging import Message


logger = get_logger(__name__)


class MemoryMessageStore:
    """Keeps sessions in a dict. Useful for tests and single-process setups."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        self._sessions.clear()

    def _get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    async def load_session(self, session_id: str) -> Session:
        return copy.deepcopy(self._get(session_id))

    async def get_or_create(self, session_id: str, **defaults: Any) -> Session:
        if session_id not in self._sessions:
            self._sessions[session_id] = Session(session_id=session_id, **defaults)
            logger.debug("Created session", session_id=session_id)
        return copy.deepcopy(self._sessions[session_id])

    async def append_message(self, session_id: str, message: Message) -> None:
        self._get(session_id).messages.append(copy.deepcopy(message))

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None:
        self._get(session_id).messages = copy.deepcopy(messages)

    async def set_stream_id(self, session_id: str, stream_id: str | None) -> None:
        self._get(session_id).stream_id = stream_id

    async def set_resume_token(self, session_id: str, token: str | None) -> None:
        self._get(session_id).resume_token = token

    async def set_preview_stats(self, session_id: str, stats: dict[str, Any]) -> None:
        self._get(session_id).preview_stats = dict(stats)
