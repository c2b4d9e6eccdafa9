"""agentstream: session streaming orchestrator with capability server readiness tracking."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from agentstream.exceptions import (
    AgentStreamError,
    ApprovalNotFoundError,
    EngineStreamError,
    ProviderUnavailableError,
    SessionNotFoundError,
    TurnCancelledError,
)
from agentstream.log import configure_logging, get_logger
from agentstream.messaging import Message, Session
from agentstream.permissions import ToolPermissionNegotiator
from agentstream.prompting import PromptBuilder
from agentstream.readiness import ConnectivityProber, ReadinessCache, ReadinessManager
from agentstream.sessions import (
    CompletionEngine,
    EngineRequest,
    ProviderSelection,
    SessionRegistry,
    StaticProviderResolver,
    TurnHandle,
    TurnPipeline,
    TurnResult,
)
from agentstream.storage import MemoryMessageStore, MessageStore, PersistenceWriter
from agentstream.utils.cancellation import CancellationToken

try:
    __version__ = version("agentstream")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AgentStreamError",
    "ApprovalNotFoundError",
    "CancellationToken",
    "CompletionEngine",
    "ConnectivityProber",
    "EngineRequest",
    "EngineStreamError",
    "MemoryMessageStore",
    "Message",
    "MessageStore",
    "PersistenceWriter",
    "PromptBuilder",
    "ProviderSelection",
    "ProviderUnavailableError",
    "ReadinessCache",
    "ReadinessManager",
    "Session",
    "SessionNotFoundError",
    "SessionRegistry",
    "StaticProviderResolver",
    "ToolPermissionNegotiator",
    "TurnCancelledError",
    "TurnHandle",
    "TurnPipeline",
    "TurnResult",
    "__version__",
    "configure_logging",
    "get_logger",
]
