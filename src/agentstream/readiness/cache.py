"""Shared readiness cache."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from agentstream.log import get_logger


if TYPE_CHECKING:
    from collections.abc import Iterable

    from agentstream.readiness.models import ReadinessEntry
    from agentstream_config.servers import ServerDescriptor


logger = get_logger(__name__)

CacheKey = tuple[str, str]


class ReadinessCache:
    """Map from ``(scope, name)`` to readiness, shared across sessions.

    Writes are last-write-wins per key. The separate ``working`` map only holds
    settled outcomes (True for usable, False for terminally failed), so a key
    absent from it has never been settled.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, ReadinessEntry] = {}
        self._working: dict[CacheKey, bool] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, scope: str, name: str) -> ReadinessEntry | None:
        return self._entries.get((scope, name))

    def find(self, name: str) -> ReadinessEntry | None:
        """First entry with the given name in any scope."""
        return next((e for e in self._entries.values() if e.name == name), None)

    def set(self, entry: ReadinessEntry) -> None:
        self._entries[entry.key] = entry

    def entries(self) -> list[ReadinessEntry]:
        """Copies of all entries."""
        return [replace(e, tools=list(e.tools)) for e in self._entries.values()]

    def mark_working(self, key: CacheKey, working: bool) -> None:
        self._working[key] = working

    def is_working(self, key: CacheKey) -> bool | None:
        """True or False once settled, None if never probed to completion."""
        return self._working.get(key)

    def is_usable(self, descriptor: ServerDescriptor) -> bool:
        """Connected, or never probed."""
        return self._working.get(descriptor.cache_key) is not False

    def filter_descriptors(self, descriptors: Iterable[ServerDescriptor]) -> list[ServerDescriptor]:
        """Withhold descriptors known to be unusable."""
        usable = []
        for descriptor in descriptors:
            if self.is_usable(descriptor):
                usable.append(descriptor)
            else:
                logger.debug("Withholding unusable server", server=descriptor.name, scope=descriptor.scope)
        return usable

    def clear_entries(self) -> None:
        self._entries.clear()

    def clear(self) -> None:
        self._entries.clear()
        self._working.clear()
