"""Durable session storage and the end-of-turn persistence writer."""

from __future__ import annotations

from agentstream.storage.base import MessageStore
from agentstream.storage.memory import MemoryMessageStore
from agentstream.storage.stats import PreviewInput, compute_preview_stats
from agentstream.storage.writer import PersistenceWriter, TurnOutcome

__all__ = [
    "MemoryMessageStore",
    "MessageStore",
    "PersistenceWriter",
    "PreviewInput",
    "TurnOutcome",
    "compute_preview_stats",
]
