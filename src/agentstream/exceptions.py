"""Exceptions raised by agentstream."""

from __future__ import annotations


class AgentStreamError(Exception):
    """Base class for all agentstream errors."""


class ProviderUnavailableError(AgentStreamError):
    """Raised when no usable completion provider can be resolved for a turn."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"Provider {provider!r} unavailable: {reason}")


class SessionNotFoundError(AgentStreamError, KeyError):
    """Raised when a session id is unknown to the message store."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ApprovalNotFoundError(AgentStreamError, KeyError):
    """Raised when resolving an approval that is no longer pending."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"No pending approval for tool call: {call_id}")


class TurnCancelledError(AgentStreamError):
    """Raised at a suspension point once the turn's cancellation token fired."""

    def __init__(self, session_id: str | None = None):
        self.session_id = session_id
        msg = f"Turn cancelled for session {session_id}" if session_id else "Turn cancelled"
        super().__init__(msg)


class EngineStreamError(AgentStreamError):
    """Raised by completion engines for failures of the underlying process or transport.

    ``stderr`` carries any diagnostic output captured from the engine and is
    used for error classification.
    """

    def __init__(self, message: str, *, stderr: str = ""):
        self.stderr = stderr
        super().__init__(message)
