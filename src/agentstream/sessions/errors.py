"""Classification of turn errors into user facing categories."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


SESSION_NOT_FOUND_MARKER = "No conversation found with session ID"


class ErrorCategory(StrEnum):
    """Categories of failures surfaced to the user."""

    SESSION_EXPIRED = "SESSION_EXPIRED"
    PROCESS_CRASH = "PROCESS_CRASH"
    EXECUTABLE_NOT_FOUND = "EXECUTABLE_NOT_FOUND"
    AUTH_FAILURE = "AUTH_FAILURE"
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    INVALID_API_KEY = "INVALID_API_KEY"
    RATE_LIMIT = "RATE_LIMIT"
    OVERLOADED = "OVERLOADED"
    NETWORK_ERROR = "NETWORK_ERROR"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ClassifiedError:
    """An error with its category and a short human readable context."""

    category: ErrorCategory
    context: str
    message: str

    @property
    def clears_session(self) -> bool:
        """Whether the stored resumption token must be dropped."""
        return self.category is ErrorCategory.SESSION_EXPIRED

    @property
    def error_text(self) -> str:
        return f"{self.context}: {self.message}" if self.message else self.context


def classify_error(error: BaseException | str, stderr: str = "") -> ClassifiedError:  # noqa: PLR0911
    """Classify an exception raised while streaming a turn.

    Args:
        error: The exception (or its message)
        stderr: Diagnostic output captured from the engine process, if any
    """
    message = str(error)
    if SESSION_NOT_FOUND_MARKER in stderr or SESSION_NOT_FOUND_MARKER in message:
        context = "Previous session expired. Please try again."
        return ClassifiedError(ErrorCategory.SESSION_EXPIRED, context, message)
    if "exited with code" in message:
        return ClassifiedError(ErrorCategory.PROCESS_CRASH, "Engine process crashed", message)
    if "ENOENT" in message or isinstance(error, FileNotFoundError):
        context = "Required executable not found in PATH"
        return ClassifiedError(ErrorCategory.EXECUTABLE_NOT_FOUND, context, message)
    if "authentication" in message or "401" in message:
        context = "Authentication failed - check your API key"
        return ClassifiedError(ErrorCategory.AUTH_FAILURE, context, message)
    if "invalid_api_key" in message or "Invalid API Key" in message or "invalid_api_key" in stderr:
        return ClassifiedError(ErrorCategory.INVALID_API_KEY, "Invalid API key", message)
    if "rate_limit" in message or "429" in message:
        return ClassifiedError(ErrorCategory.RATE_LIMIT, "Session limit reached", message)
    if (
        "network" in message
        or "ECONNREFUSED" in message
        or "fetch failed" in message
        or isinstance(error, ConnectionError)
    ):
        context = "Network error - check your connection"
        return ClassifiedError(ErrorCategory.NETWORK_ERROR, context, message)
    return ClassifiedError(ErrorCategory.UNKNOWN, "Streaming error", message)


def extract_provider_error(event: dict[str, Any]) -> tuple[str, str] | None:
    """Return ``(error_text, raw_code)`` if a raw engine event reports an error."""
    if event.get("type") != "error" and not event.get("error"):
        return None
    raw = event.get("error")
    message = event.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    message_text = None
    if isinstance(content, list) and content and isinstance(content[0], dict):
        message_text = content[0].get("text")
    details = raw if isinstance(raw, dict) else {}
    error_value = raw if isinstance(raw, str) else details.get("message")
    code = raw if isinstance(raw, str) else details.get("type", "")
    return message_text or error_value or "Unknown provider error", code or ""


def classify_provider_error(error_text: str, raw_code: str = "") -> ClassifiedError:  # noqa: PLR0911
    """Classify an error reported in-band by the provider."""
    if raw_code == "authentication_failed" or "authentication" in error_text:
        context = "Authentication failed - not logged in to the provider"
        return ClassifiedError(ErrorCategory.AUTH_FAILURE, context, error_text)
    if "invalid_token" in error_text or "Invalid access token" in error_text:
        context = "Invalid access token. Update capability server settings"
        return ClassifiedError(ErrorCategory.INVALID_CREDENTIAL, context, error_text)
    if raw_code == "invalid_api_key" or "api_key" in error_text:
        return ClassifiedError(ErrorCategory.INVALID_API_KEY, "Invalid API key", error_text)
    if raw_code == "rate_limit_exceeded" or "rate" in error_text:
        return ClassifiedError(ErrorCategory.RATE_LIMIT, "Session limit reached", error_text)
    if raw_code == "overloaded" or "overload" in error_text:
        context = "Provider is overloaded, try again later"
        return ClassifiedError(ErrorCategory.OVERLOADED, context, error_text)
    if raw_code == "invalid_request" or "Usage Policy" in error_text or "violate" in error_text:
        return ClassifiedError(ErrorCategory.POLICY_VIOLATION, error_text, "")
    return ClassifiedError(ErrorCategory.PROVIDER_ERROR, error_text, "")
