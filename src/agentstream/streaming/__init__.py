"""Normalized chunk stream and message accumulation."""

from __future__ import annotations

from agentstream.streaming.accumulator import MessageAccumulator
from agentstream.streaming.channels import (
    BufferChannel,
    CallbackChannel,
    CompositeChannel,
    LoggingChannel,
    OutputChannel,
)
from agentstream.streaming.transformer import StreamTransformer, make_composite_id

__all__ = [
    "BufferChannel",
    "CallbackChannel",
    "CompositeChannel",
    "LoggingChannel",
    "MessageAccumulator",
    "OutputChannel",
    "StreamTransformer",
    "make_composite_id",
]
