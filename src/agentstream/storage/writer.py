"""Persist the accumulated assistant message at the end of a turn."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from agentstream.log import get_logger
from agentstream.messaging import Message
from agentstream.storage.stats import compute_preview_stats


if TYPE_CHECKING:
    from agentstream.storage.base import MessageStore
    from agentstream.streaming.accumulator import MessageAccumulator


logger = get_logger(__name__)

type TurnOutcome = Literal["completed", "cancelled", "errored"]


class PersistenceWriter:
    """Writes exactly one assistant message per turn, whatever the outcome."""

    def __init__(self, store: MessageStore) -> None:
        self.store = store

    async def flush(
        self,
        session_id: str,
        accumulator: MessageAccumulator,
        outcome: TurnOutcome,
        *,
        clear_resume_token: bool = False,
    ) -> Message | None:
        """Persist whatever ``accumulator`` holds and clear the in-progress marker.

        Args:
            session_id: Session to write to
            accumulator: Parts and metadata of the in-flight assistant message
            outcome: How the turn ended
            clear_resume_token: Drop the stored resume token instead of updating it

        Returns:
            The persisted assistant message, or None if nothing was produced
        """
        message: Message | None = None
        try:
            accumulator.flush_text()
            if clear_resume_token:
                await self.store.set_resume_token(session_id, None)
            if accumulator.parts:
                message = Message(
                    role="assistant",
                    parts=list(accumulator.parts),
                    metadata=dict(accumulator.metadata),
                )
                session = await self.store.load_session(session_id)
                messages = [*session.messages, message]
                await self.store.replace_messages(session_id, messages)
                stats = compute_preview_stats(messages, session.mode)
                await self.store.set_preview_stats(session_id, stats)
                token = accumulator.metadata.get("sessionId")
                if token and not clear_resume_token:
                    await self.store.set_resume_token(session_id, token)
            logger.info(
                "Flushed turn",
                session_id=session_id,
                outcome=outcome,
                parts=len(message.parts) if message else 0,
            )
        finally:
            await self.store.set_stream_id(session_id, None)
        return message
