"""Cooperative cancellation tokens."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from agentstream.exceptions import TurnCancelledError
from agentstream.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable


logger = get_logger(__name__)


class CancellationToken:
    """A one-shot cancellation flag shared between a turn and whoever may stop it.

    Setting the flag never interrupts running code on its own. Every suspension
    point is expected to check ``cancelled`` before and after awaiting, or to
    race its wait against ``wait()``.
    """

    def __init__(self, owner: str | None = None) -> None:
        self.owner = owner
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    def __repr__(self) -> str:
        return f"CancellationToken(owner={self.owner!r}, cancelled={self.cancelled})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Set the flag and run registered callbacks once."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed", owner=self.owner)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on cancellation, immediately if already cancelled."""
        if self.cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TurnCancelledError(self.owner)
