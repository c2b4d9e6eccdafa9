"""Tracks the single active generation of every session."""

from __future__ import annotations

from typing import TYPE_CHECKING

from agentstream.log import get_logger
from agentstream.utils.cancellation import CancellationToken


if TYPE_CHECKING:
    import asyncio


logger = get_logger(__name__)

SUPERSEDED = "superseded"
"""Cancellation reason of a turn replaced by a newer one."""


class SessionRegistry:
    """Maps session ids to their active cancellation token and turn task."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._tasks: dict[str, asyncio.Task[object]] = {}

    def begin(self, session_id: str) -> tuple[CancellationToken, asyncio.Task[object] | None]:
        """Cancel the session's running turn and register a token for a new one.

        Synchronous, so no second caller can interleave between the two steps.

        Returns:
            The new token and the superseded turn's task, if any
        """
        if existing := self._tokens.get(session_id):
            logger.info("Cancelling superseded turn", session_id=session_id)
            existing.cancel(SUPERSEDED)
        token = CancellationToken(session_id)
        self._tokens[session_id] = token
        return token, self._tasks.get(session_id)

    def attach_task(self, session_id: str, token: CancellationToken, task: asyncio.Task) -> None:
        if self._tokens.get(session_id) is token:
            self._tasks[session_id] = task

    def release(self, session_id: str, token: CancellationToken) -> None:
        """Forget the session's turn, unless a newer turn already replaced it."""
        if self._tokens.get(session_id) is token:
            del self._tokens[session_id]
            self._tasks.pop(session_id, None)

    def get_token(self, session_id: str) -> CancellationToken | None:
        return self._tokens.get(session_id)

    def is_active(self, session_id: str) -> bool:
        return session_id in self._tokens

    @property
    def active_sessions(self) -> list[str]:
        return list(self._tokens)

    def tasks(self) -> list[asyncio.Task[object]]:
        return list(self._tasks.values())

    def cancel(self, session_id: str, reason: str = "cancelled") -> bool:
        """Cancel the session's turn. Returns False if none is running."""
        token = self._tokens.get(session_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    def reset(self) -> None:
        for token in self._tokens.values():
            token.cancel("reset")
        self._tokens.clear()
        self._tasks.clear()
