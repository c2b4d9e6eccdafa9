"""Session and turn configuration."""

from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field
from schemez import Schema


SessionMode = Literal["plan", "agent"]


class SessionConfig(Schema):
    """Defaults applied to every turn run by the pipeline."""

    mode: SessionMode = Field(default="agent", title="Default mode")
    """Mode used for sessions that do not specify one."""

    approval_timeout: float = Field(default=600.0, gt=0, title="Approval timeout")
    """Seconds an interactive question may stay pending before it is denied."""

    chat_mode: bool = Field(default=False, title="Restricted chat mode")
    """Deny all file and execution tools."""

    empty_response_message: str = Field(
        default="No response received from the completion engine",
        title="Empty response message",
    )
    """Error text emitted when the engine produced no events at all."""

    model_config = ConfigDict(frozen=True)
