"""Configuration models for agentstream."""

from __future__ import annotations

from agentstream_config.prompts import (
    AUTOMATION_STRATEGY,
    CHAT_STRATEGY,
    INSIGHTS_STRATEGY,
    WORKER_STRATEGY,
    PromptStrategy,
    UserProfile,
)
from agentstream_config.readiness import ReadinessConfig
from agentstream_config.servers import (
    HttpServerDescriptor,
    ServerDescriptor,
    StdioServerDescriptor,
)
from agentstream_config.session import SessionConfig

__all__ = [
    "AUTOMATION_STRATEGY",
    "CHAT_STRATEGY",
    "INSIGHTS_STRATEGY",
    "WORKER_STRATEGY",
    "HttpServerDescriptor",
    "PromptStrategy",
    "ReadinessConfig",
    "ServerDescriptor",
    "SessionConfig",
    "StdioServerDescriptor",
    "UserProfile",
]
