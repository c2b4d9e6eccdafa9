"""Capability server readiness tracking."""

from __future__ import annotations

from agentstream.readiness.cache import ReadinessCache
from agentstream.readiness.events import (
    ReadinessEvent,
    ReadinessEventBus,
    ServerStatusChanged,
    WarmupCompleted,
    WarmupStateChanged,
)
from agentstream.readiness.manager import (
    CredentialRefresher,
    DescriptorStore,
    NoopCredentialRefresher,
    ReadinessManager,
    StaticDescriptorStore,
)
from agentstream.readiness.models import (
    ProbeResult,
    ReadinessEntry,
    ReadinessSnapshot,
    ServerStatus,
    WarmupState,
)
from agentstream.readiness.prober import ConnectivityProber, Prober, status_from_config

__all__ = [
    "ConnectivityProber",
    "CredentialRefresher",
    "DescriptorStore",
    "NoopCredentialRefresher",
    "ProbeResult",
    "Prober",
    "ReadinessCache",
    "ReadinessEntry",
    "ReadinessEvent",
    "ReadinessEventBus",
    "ReadinessManager",
    "ReadinessSnapshot",
    "ServerStatus",
    "ServerStatusChanged",
    "StaticDescriptorStore",
    "WarmupCompleted",
    "WarmupState",
    "WarmupStateChanged",
    "status_from_config",
]
