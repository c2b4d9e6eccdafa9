"""Connectivity probing of capability servers."""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import urlsplit

import httpx

from agentstream.log import get_logger
from agentstream.readiness.models import ProbeResult
from agentstream_config.readiness import ReadinessConfig
from agentstream_config.servers import HttpServerDescriptor, StdioServerDescriptor


if TYPE_CHECKING:
    from collections.abc import Callable

    import fastmcp

    from agentstream.readiness.models import ServerStatus
    from agentstream_config.servers import ServerDescriptor


logger = get_logger(__name__)

OAUTH_METADATA_PATH = "/.well-known/oauth-authorization-server"


class Prober(Protocol):
    """What the readiness manager needs from a prober."""

    async def probe(self, descriptor: ServerDescriptor) -> ProbeResult: ...

    async def classify_failure(self, descriptor: ServerDescriptor) -> ServerStatus: ...


def _build_client(descriptor: ServerDescriptor, timeout: float) -> fastmcp.Client[Any]:
    """Create a FastMCP client for the descriptor's transport."""
    import fastmcp
    from fastmcp.client import StreamableHttpTransport
    from fastmcp.client.transports import StdioTransport

    match descriptor:
        case StdioServerDescriptor(command=command, args=args, env=env):
            transport: Any = StdioTransport(
                command=command,
                args=list(args),
                env={**os.environ, **env},
            )
        case HttpServerDescriptor(url=url, headers=headers):
            transport = StreamableHttpTransport(url=url, headers=dict(headers))
    return fastmcp.Client(transport, timeout=timeout)


def status_from_config(descriptor: ServerDescriptor) -> ServerStatus:
    """Static readiness guess from configuration alone, used before probing."""
    if descriptor.auth_type == "none":
        return "connected"
    if isinstance(descriptor, HttpServerDescriptor) and descriptor.authorization:
        return "connected"
    if descriptor.oauth:
        return "needs-auth"
    if isinstance(descriptor, HttpServerDescriptor) and descriptor.auth_type in ("oauth", "bearer"):
        return "needs-auth"
    return "connected"


class ConnectivityProber:
    """Enumerates a server's operations within a transport specific timeout.

    ``probe`` never raises: every transport failure becomes a ``ProbeResult``
    with an ``error`` or ``timeout`` outcome.
    """

    def __init__(
        self,
        config: ReadinessConfig | None = None,
        *,
        client_factory: Callable[[ServerDescriptor, float], Any] | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ReadinessConfig()
        self._client_factory = client_factory or _build_client
        self._http_transport = http_transport

    def timeout_for(self, descriptor: ServerDescriptor) -> float:
        match descriptor:
            case HttpServerDescriptor():
                return self.config.http_timeout
            case StdioServerDescriptor():
                return self.config.stdio_timeout

    async def probe(self, descriptor: ServerDescriptor) -> ProbeResult:
        timeout = self.timeout_for(descriptor)
        try:
            async with asyncio.timeout(timeout):
                client = self._client_factory(descriptor, timeout)
                async with client:
                    tools = await client.list_tools()
        except TimeoutError:
            logger.warning("Probe timed out", server=descriptor.name, timeout=timeout)
            return ProbeResult(outcome="timeout", error=f"Timeout after {timeout}s")
        except Exception as e:  # noqa: BLE001
            logger.warning("Probe failed", server=descriptor.name, error=str(e))
            return ProbeResult(outcome="error", error=str(e) or type(e).__name__)
        names = [tool.name for tool in tools]
        logger.debug("Probe finished", server=descriptor.name, tools=len(names))
        return ProbeResult.from_tools(names)

    async def fetch_tools(self, descriptor: ServerDescriptor) -> list[str]:
        """Operation names of the server, empty on any failure."""
        return (await self.probe(descriptor)).tools

    async def discover_oauth_metadata(self, url: str) -> dict[str, Any] | None:
        """Fetch the server's public OAuth authorization server metadata, if any."""
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return None
        metadata_url = f"{parts.scheme}://{parts.netloc}{OAUTH_METADATA_PATH}"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.oauth_discovery_timeout),
                transport=self._http_transport,
            ) as client:
                response = await client.get(metadata_url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("No OAuth metadata", url=metadata_url, error=str(e))
            return None
        return data if isinstance(data, dict) else None

    async def classify_failure(self, descriptor: ServerDescriptor) -> ServerStatus:
        """Classify a probe that produced no operations."""
        if isinstance(descriptor, HttpServerDescriptor) and not descriptor.authorization:
            metadata = await self.discover_oauth_metadata(descriptor.url)
            if metadata and metadata.get("authorization_endpoint"):
                return "needs-auth"
        has_credential = isinstance(descriptor, HttpServerDescriptor) and bool(
            descriptor.authorization
        )
        if descriptor.auth_type in ("oauth", "bearer") and not has_credential:
            return "needs-auth"
        return "failed"
