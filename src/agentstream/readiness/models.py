"""Readiness data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


ServerStatus = Literal[
    "connecting",
    "connected",
    "failed",
    "timeout",
    "retrying",
    "needs-auth",
    "pending",
]
WarmupState = Literal["idle", "warming", "completed", "failed"]
ProbeOutcome = Literal["ok", "empty", "timeout", "error"]


@dataclass(kw_only=True)
class ReadinessEntry:
    """Current usability of one capability server."""

    name: str
    """Server name."""

    scope: str
    """Scope the server was declared in."""

    status: ServerStatus = "connecting"
    """Latest known status."""

    error: str | None = None
    """Last error, if the latest attempt failed."""

    retry_count: int = 0
    """Retries performed by the warmup run that produced this entry."""

    last_attempt: int = 0
    """Epoch milliseconds of the latest probe attempt."""

    last_success: int | None = None
    """Epoch milliseconds of the latest successful probe."""

    tools: list[str] = field(default_factory=list)
    """Operation names discovered by the latest successful probe."""

    @property
    def key(self) -> tuple[str, str]:
        return (self.scope, self.name)


@dataclass(frozen=True, kw_only=True)
class ProbeResult:
    """Outcome of one connectivity probe."""

    tools: list[str] = field(default_factory=list)
    """Discovered operation names."""

    outcome: ProbeOutcome = "ok"
    """``empty`` means the server answered with no operations."""

    error: str | None = None
    """Error message for ``timeout`` and ``error`` outcomes."""

    @property
    def transient(self) -> bool:
        """Whether retrying may help."""
        return self.outcome in ("timeout", "error")

    @classmethod
    def from_tools(cls, tools: list[str]) -> ProbeResult:
        return cls(tools=tools, outcome="ok" if tools else "empty")


@dataclass(frozen=True, kw_only=True)
class ReadinessSnapshot:
    """Point in time view of the readiness subsystem."""

    state: WarmupState
    """Overall warmup state."""

    servers: list[ReadinessEntry]
    """Copies of all entries."""
