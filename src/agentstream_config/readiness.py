"""Readiness (warmup) configuration."""

from __future__ import annotations

from pydantic import ConfigDict, Field
from schemez import Schema


class ReadinessConfig(Schema):
    """Tuning for the startup warmup pass and connectivity probes."""

    retry_delays: list[float] = Field(
        default_factory=lambda: [2.0, 30.0, 30.0],
        examples=[[2.0, 30.0, 30.0], [0.5, 1.0]],
        title="Retry delays",
    )
    """Seconds to wait before each retry. Its length is the maximum retry count."""

    http_timeout: float = Field(default=10.0, gt=0, title="HTTP probe timeout")
    """Timeout in seconds for probing HTTP servers."""

    stdio_timeout: float = Field(default=30.0, gt=0, title="Stdio probe timeout")
    """Timeout in seconds for probing local process servers.

    Longer than the HTTP timeout to cover package download on cold start.
    """

    oauth_discovery_timeout: float = Field(default=5.0, gt=0, title="OAuth discovery timeout")
    """Timeout in seconds for fetching OAuth authorization server metadata."""

    ephemeral_path_markers: list[str] = Field(
        default_factory=lambda: ["/.hong/worktrees/", "\\.hong\\worktrees\\"],
        title="Ephemeral path markers",
    )
    """Project paths containing any of these are derived working copies and skipped."""

    model_config = ConfigDict(frozen=True)

    @property
    def max_retries(self) -> int:
        return len(self.retry_delays)

    def is_ephemeral(self, project_path: str | None) -> bool:
        if not project_path:
            return False
        return any(marker in project_path for marker in self.ephemeral_path_markers)
