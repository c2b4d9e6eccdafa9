"""Capability server descriptor models."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import ConfigDict, Field
from schemez import Schema


AuthType = Literal["none", "oauth", "bearer"]
ServerScope = str
"""``"global"``, ``"builtin"``, ``"project:<path>"`` or ``"plugin:<source>"``."""

GLOBAL_SCOPE: ServerScope = "global"


class BaseServerDescriptor(Schema):
    """Base descriptor of a capability server."""

    type: str = Field(init=False)
    """Transport type discriminator."""

    name: str = Field(
        examples=["filesystem", "github", "linear"],
        title="Server name",
    )
    """Name of the server, unique within its scope."""

    scope: ServerScope = Field(
        default=GLOBAL_SCOPE,
        examples=["global", "project:/home/me/repo", "plugin:acme-tools", "builtin"],
        title="Scope",
    )
    """Where the descriptor was declared."""

    auth_type: AuthType | None = Field(default=None, title="Authentication type")
    """Declared authentication requirement. Unset means undeclared."""

    oauth: bool = Field(default=False, title="Legacy OAuth flag")
    """Set by older configs that marked OAuth servers without an auth type."""

    model_config = ConfigDict(frozen=True)

    @property
    def project_path(self) -> str | None:
        """Project directory for project-scoped descriptors."""
        if self.scope.startswith("project:"):
            return self.scope.removeprefix("project:")
        return None

    @property
    def cache_key(self) -> tuple[ServerScope, str]:
        return (self.scope, self.name)


class StdioServerDescriptor(BaseServerDescriptor):
    """Server started as a local process speaking over stdio."""

    type: Literal["stdio"] = Field("stdio", init=False)
    """Local process transport."""

    command: str = Field(examples=["npx", "uvx"], title="Command")
    """Executable to start."""

    args: list[str] = Field(default_factory=list, title="Arguments")
    """Command line arguments."""

    env: dict[str, str] = Field(default_factory=dict, title="Environment")
    """Extra environment variables for the process."""


class HttpServerDescriptor(BaseServerDescriptor):
    """Server reachable over streamable HTTP."""

    type: Literal["http"] = Field("http", init=False)
    """HTTP transport."""

    url: str = Field(examples=["https://mcp.example.com/mcp"], title="Server URL")
    """Endpoint URL."""

    headers: dict[str, str] = Field(default_factory=dict, title="Headers")
    """Headers sent with every request, including any Authorization header."""

    @property
    def authorization(self) -> str | None:
        for key, value in self.headers.items():
            if key.lower() == "authorization" and value:
                return value
        return None


ServerDescriptor = Annotated[
    StdioServerDescriptor | HttpServerDescriptor,
    Field(discriminator="type"),
]
