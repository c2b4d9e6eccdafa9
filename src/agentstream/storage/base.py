"""Durable message store interface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol


if TYPE_CHECKING:
    from agentstream.messaging import Message, Session


class MessageStore(Protocol):
    """Per-session durable state: messages, resume token and in-progress marker.

    Implementations must return independent copies from ``load_session`` so
    that callers never mutate stored state by accident.
    """

    async def load_session(self, session_id: str) -> Session:
        """Load a session.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        ...

    async def get_or_create(self, session_id: str, **defaults: Any) -> Session: ...

    async def append_message(self, session_id: str, message: Message) -> None: ...

    async def replace_messages(self, session_id: str, messages: list[Message]) -> None: ...

    async def set_stream_id(self, session_id: str, stream_id: str | None) -> None: ...

    async def set_resume_token(self, session_id: str, token: str | None) -> None: ...

    async def set_preview_stats(self, session_id: str, stats: dict[str, Any]) -> None: ...
