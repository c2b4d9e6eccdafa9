"""Resolution of the provider and model a turn runs on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx

from agentstream.exceptions import ProviderUnavailableError
from agentstream.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from agentstream.messaging import Session


logger = get_logger(__name__)


@dataclass(frozen=True)
class ProviderSelection:
    """The provider a turn is run with."""

    provider: str
    model: str | None = None
    offline: bool = False
    """Local provider without server-side sessions, history is sent inline."""

    @property
    def is_ollama(self) -> bool:
        return self.provider == "ollama"


class ProviderResolver(Protocol):
    async def resolve(self, session: Session) -> ProviderSelection:
        """Return the provider to use.

        Raises:
            ProviderUnavailableError: If no usable provider exists
        """
        ...


class StaticProviderResolver:
    """Always resolves to the same provider."""

    def __init__(self, selection: ProviderSelection) -> None:
        self.selection = selection

    async def resolve(self, session: Session) -> ProviderSelection:
        return self.selection


def http_connectivity_check(
    url: str,
    *,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Callable[[], Awaitable[bool]]:
    """Build a check that reports whether ``url`` answers at all."""

    async def check() -> bool:
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                await client.head(url)
        except httpx.HTTPError as e:
            logger.debug("Connectivity check failed", url=url, error=str(e))
            return False
        return True

    return check


class FallbackProviderResolver:
    """Prefers a remote provider and falls back to a local one when offline.

    Without a fallback the turn fails with ``ProviderUnavailableError`` rather
    than running half configured.
    """

    def __init__(
        self,
        preferred: ProviderSelection,
        connectivity_check: Callable[[], Awaitable[bool]],
        fallback: ProviderSelection | None = None,
    ) -> None:
        self.preferred = preferred
        self.connectivity_check = connectivity_check
        self.fallback = fallback

    async def resolve(self, session: Session) -> ProviderSelection:
        if await self.connectivity_check():
            return self.preferred
        if self.fallback is None:
            raise ProviderUnavailableError(self.preferred.provider, "offline and no fallback")
        logger.info(
            "Falling back to offline provider",
            session_id=session.session_id,
            provider=self.fallback.provider,
            model=self.fallback.model,
        )
        return self.fallback
