"""Session turns: registry, provider resolution, error classification and the pipeline."""

from __future__ import annotations

from agentstream.sessions.engine import CanUseTool, CompletionEngine, EngineRequest
from agentstream.sessions.errors import (
    ClassifiedError,
    ErrorCategory,
    classify_error,
    classify_provider_error,
    extract_provider_error,
)
from agentstream.sessions.pipeline import TurnHandle, TurnPipeline, TurnResult
from agentstream.sessions.providers import (
    FallbackProviderResolver,
    ProviderResolver,
    ProviderSelection,
    StaticProviderResolver,
    http_connectivity_check,
)
from agentstream.sessions.registry import SessionRegistry

__all__ = [
    "CanUseTool",
    "ClassifiedError",
    "CompletionEngine",
    "EngineRequest",
    "ErrorCategory",
    "FallbackProviderResolver",
    "ProviderResolver",
    "ProviderSelection",
    "SessionRegistry",
    "StaticProviderResolver",
    "TurnHandle",
    "TurnPipeline",
    "TurnResult",
    "classify_error",
    "classify_provider_error",
    "extract_provider_error",
    "http_connectivity_check",
]
