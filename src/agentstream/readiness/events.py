"""Readiness events and the bus publishing them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from psygnal import Signal

from agentstream.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable

    from agentstream.readiness.models import ServerStatus, WarmupState


logger = get_logger(__name__)


@dataclass(frozen=True, kw_only=True)
class WarmupStateChanged:
    """The overall warmup state changed."""

    state: WarmupState
    """New state."""

    event_kind: Literal["state_change"] = "state_change"
    """Event type identifier."""


@dataclass(frozen=True, kw_only=True)
class ServerStatusChanged:
    """A readiness entry was updated."""

    name: str
    """Server name."""

    scope: str
    """Server scope."""

    status: ServerStatus
    """New status."""

    error: str | None = None
    """Last error, if any."""

    retry_count: int = 0
    """Retries performed so far."""

    last_attempt: int = 0
    """Epoch milliseconds of the latest attempt."""

    last_success: int | None = None
    """Epoch milliseconds of the latest success."""

    tools: list[str] = field(default_factory=list)
    """Discovered operation names."""

    event_kind: Literal["server_status_change"] = "server_status_change"
    """Event type identifier."""


@dataclass(frozen=True, kw_only=True)
class WarmupCompleted:
    """A warmup run finished probing every server."""

    duration_ms: int
    """Wall time of the run."""

    success_count: int
    """Servers that ended up connected."""

    total: int
    """Servers probed."""

    event_kind: Literal["completed"] = "completed"
    """Event type identifier."""


type ReadinessEvent = WarmupStateChanged | ServerStatusChanged | WarmupCompleted
type ReadinessHandler = Callable[[ReadinessEvent], None]


class ReadinessEventBus:
    """Publishes readiness events to an explicit set of subscribers.

    Each event kind has its own signal; ``subscribe`` connects one handler
    to all of them. Handlers are isolated from each other: one that raises is
    logged and the remaining handlers still receive the event.
    """

    state_changed = Signal(WarmupStateChanged)
    """Emitted when the overall warmup state changes."""

    server_status_changed = Signal(ServerStatusChanged)
    """Emitted on every readiness entry update."""

    warmup_completed = Signal(WarmupCompleted)
    """Emitted once per finished warmup run."""

    def __init__(self) -> None:
        self._subscribers: dict[ReadinessHandler, ReadinessHandler] = {}

    @property
    def subscribers(self) -> list[ReadinessHandler]:
        return list(self._subscribers)

    def subscribe(self, handler: ReadinessHandler) -> Callable[[], None]:
        """Receive every readiness event. Returns a function that unsubscribes."""
        if handler in self._subscribers:
            return lambda: self.unsubscribe(handler)

        def deliver(event: ReadinessEvent) -> None:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Readiness subscriber failed",
                    subscriber=getattr(handler, "__qualname__", repr(handler)),
                    event_kind=event.event_kind,
                )

        self._subscribers[handler] = deliver
        self.state_changed.connect(deliver)
        self.server_status_changed.connect(deliver)
        self.warmup_completed.connect(deliver)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: ReadinessHandler) -> None:
        deliver = self._subscribers.pop(handler, None)
        if deliver is None:
            return
        self.state_changed.disconnect(deliver, missing_ok=True)
        self.server_status_changed.disconnect(deliver, missing_ok=True)
        self.warmup_completed.disconnect(deliver, missing_ok=True)

    def publish(self, event: ReadinessEvent) -> None:
        """Emit ``event`` on the signal for its kind."""
        match event:
            case WarmupStateChanged():
                signal = self.state_changed
            case ServerStatusChanged():
                signal = self.server_status_changed
            case WarmupCompleted():
                signal = self.warmup_completed
        signal.emit(event)
