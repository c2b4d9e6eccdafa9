"""Startup warmup and on-demand revalidation of capability servers."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import replace
import time
from typing import TYPE_CHECKING, Protocol

from agentstream.log import get_logger
from agentstream.readiness.cache import ReadinessCache
from agentstream.readiness.events import (
    ReadinessEventBus,
    ServerStatusChanged,
    WarmupCompleted,
    WarmupStateChanged,
)
from agentstream.readiness.models import ProbeResult, ReadinessEntry, ReadinessSnapshot
from agentstream.readiness.prober import ConnectivityProber
from agentstream.utils.time_utils import elapsed_ms, now_ms
from agentstream_config.readiness import ReadinessConfig


if TYPE_CHECKING:
    from collections.abc import Sequence

    from agentstream.readiness.models import ServerStatus, WarmupState
    from agentstream.readiness.prober import Prober
    from agentstream_config.servers import ServerDescriptor


logger = get_logger(__name__)


class DescriptorStore(Protocol):
    """Supplies the merged capability server descriptors."""

    async def list_descriptors(self) -> Sequence[ServerDescriptor]: ...


class CredentialRefresher(Protocol):
    """Returns the descriptor with a currently valid credential, if one can be obtained."""

    async def refresh(self, descriptor: ServerDescriptor) -> ServerDescriptor: ...


class StaticDescriptorStore:
    """Descriptor store over a fixed list."""

    def __init__(self, descriptors: Sequence[ServerDescriptor] = ()) -> None:
        self.descriptors = list(descriptors)

    async def list_descriptors(self) -> Sequence[ServerDescriptor]:
        return list(self.descriptors)


class NoopCredentialRefresher:
    """Leaves descriptors unchanged."""

    async def refresh(self, descriptor: ServerDescriptor) -> ServerDescriptor:
        return descriptor


class ReadinessManager:
    """Tracks which capability servers are currently usable.

    ``start_warmup`` probes every known server concurrently with per-server
    retry. ``retry_server`` revalidates a single server on demand. Both write
    the same cache, the last write for a key wins.
    """

    def __init__(
        self,
        store: DescriptorStore,
        *,
        prober: Prober | None = None,
        refresher: CredentialRefresher | None = None,
        cache: ReadinessCache | None = None,
        bus: ReadinessEventBus | None = None,
        config: ReadinessConfig | None = None,
    ) -> None:
        self.config = config or ReadinessConfig()
        self.store = store
        self.prober: Prober = prober or ConnectivityProber(self.config)
        self.refresher: CredentialRefresher = refresher or NoopCredentialRefresher()
        self.cache = cache or ReadinessCache()
        self.bus = bus or ReadinessEventBus()
        self._state: WarmupState = "idle"
        self._warmup_task: asyncio.Task[None] | None = None
        self._aborted = False
        self._abort_event = asyncio.Event()

    @property
    def state(self) -> WarmupState:
        return self._state

    def _set_state(self, state: WarmupState) -> None:
        self._state = state
        logger.info("Warmup state changed", state=state)
        self.bus.publish(WarmupStateChanged(state=state))

    def get_server_state(self, name: str, scope: str | None = None) -> ReadinessEntry | None:
        """Peek at a server's readiness without triggering a probe."""
        return self.cache.find(name) if scope is None else self.cache.get(scope, name)

    def get_warmup_task(self) -> asyncio.Task[None] | None:
        """The in-flight warmup run, if any. Await it to block until warmup finishes."""
        return self._warmup_task

    def snapshot(self) -> ReadinessSnapshot:
        return ReadinessSnapshot(state=self._state, servers=self.cache.entries())

    def start_warmup(self) -> asyncio.Task[None]:
        """Start a warmup run, or return the one already in flight."""
        if self._warmup_task is not None:
            return self._warmup_task
        self._aborted = False
        self._abort_event = asyncio.Event()
        self.cache.clear_entries()
        self._set_state("warming")
        self._warmup_task = asyncio.create_task(self._run_warmup(), name="readiness-warmup")
        return self._warmup_task

    def abort(self) -> None:
        """Stop scheduling retries and mark the run failed.

        Probes already in flight finish on their own, their results are discarded.
        """
        self._aborted = True
        self._abort_event.set()
        self._set_state("failed")

    def reset(self) -> None:
        """Forget all readiness state. Intended for tests and re-initialization."""
        if self._warmup_task is not None:
            self.abort()
            self._warmup_task.cancel()
            self._warmup_task = None
        self.cache.clear()
        self._state = "idle"
        self._aborted = False
        self._abort_event = asyncio.Event()

    async def _run_warmup(self) -> None:
        start = time.monotonic()
        try:
            descriptors = [
                d
                for d in await self.store.list_descriptors()
                if not self.config.is_ephemeral(d.project_path)
            ]
            if not descriptors:
                self._set_state("completed")
                return
            logger.info("Warming up capability servers", count=len(descriptors))
            results = await asyncio.gather(
                *(self._warmup_server(d) for d in descriptors),
                return_exceptions=True,
            )
            for descriptor, result in zip(descriptors, results, strict=True):
                if isinstance(result, BaseException):
                    logger.error("Warmup of server crashed", server=descriptor.name, error=str(result))
            if self._aborted:
                return
            success_count = sum(
                1
                for d in descriptors
                if (entry := self.cache.get(d.scope, d.name)) and entry.status == "connected"
            )
            duration = elapsed_ms(start)
            logger.info(
                "Warmup completed",
                duration_ms=duration,
                success=success_count,
                total=len(descriptors),
            )
            self._set_state("completed")
            self.bus.publish(
                WarmupCompleted(
                    duration_ms=duration,
                    success_count=success_count,
                    total=len(descriptors),
                )
            )
        except Exception:
            logger.exception("Unexpected warmup error")
            self._set_state("failed")
        finally:
            self._warmup_task = None

    async def _attempt(self, descriptor: ServerDescriptor) -> tuple[ServerDescriptor, ProbeResult]:
        try:
            fresh = await self.refresher.refresh(descriptor)
        except Exception as e:  # noqa: BLE001
            logger.warning("Credential refresh failed", server=descriptor.name, error=str(e))
            return descriptor, ProbeResult(outcome="error", error=str(e))
        return fresh, await self.prober.probe(fresh)

    async def _sleep(self, delay: float) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._abort_event.wait(), timeout=delay)

    async def _warmup_server(self, descriptor: ServerDescriptor) -> None:
        start = time.monotonic()
        self._update(descriptor, status="connecting", retry_count=0, last_attempt=now_ms())
        retry_count = 0
        max_retries = self.config.max_retries
        while retry_count <= max_retries:
            if self._aborted:
                return
            fresh, result = await self._attempt(descriptor)
            if self._aborted:
                return
            if result.tools:
                self._mark_connected(descriptor, result, retry_count)
                return
            if not result.transient:
                status = await self.prober.classify_failure(fresh)
                self.cache.mark_working(descriptor.cache_key, False)
                self._update(
                    descriptor,
                    status=status,
                    error="No tools available",
                    retry_count=retry_count,
                    last_attempt=now_ms(),
                )
                logger.warning(
                    "Server has no tools",
                    server=descriptor.name,
                    status=status,
                    elapsed_ms=elapsed_ms(start),
                )
                return
            if retry_count < max_retries:
                retry_count += 1
                self._update(
                    descriptor,
                    status="retrying",
                    error=result.error,
                    retry_count=retry_count,
                    last_attempt=now_ms(),
                )
                delay = self.config.retry_delays[retry_count - 1]
                logger.warning(
                    "Retrying server",
                    server=descriptor.name,
                    attempt=retry_count,
                    max_retries=max_retries,
                    delay=delay,
                    reason=result.outcome,
                )
                await self._sleep(delay)
                continue
            self.cache.mark_working(descriptor.cache_key, False)
            self._update(
                descriptor,
                status="timeout" if result.outcome == "timeout" else "failed",
                error=result.error,
                retry_count=retry_count,
                last_attempt=now_ms(),
            )
            logger.error(
                "Server failed after retries",
                server=descriptor.name,
                retries=max_retries,
                elapsed_ms=elapsed_ms(start),
            )
            return

    async def retry_server(self, descriptor: ServerDescriptor) -> ReadinessEntry:
        """Probe one server once, outside of any warmup run."""
        fresh, result = await self._attempt(descriptor)
        previous = self.cache.get(descriptor.scope, descriptor.name)
        retry_count = previous.retry_count if previous else 0
        if result.tools:
            return self._mark_connected(descriptor, result, retry_count)
        status: ServerStatus
        if result.outcome == "timeout":
            status = "timeout"
        elif result.transient:
            status = "failed"
        else:
            status = await self.prober.classify_failure(fresh)
        self.cache.mark_working(descriptor.cache_key, False)
        return self._update(
            descriptor,
            status=status,
            error=result.error or "No tools available",
            retry_count=retry_count,
            last_attempt=now_ms(),
        )

    def _mark_connected(
        self, descriptor: ServerDescriptor, result: ProbeResult, retry_count: int
    ) -> ReadinessEntry:
        self.cache.mark_working(descriptor.cache_key, True)
        now = now_ms()
        logger.info("Server connected", server=descriptor.name, tools=len(result.tools))
        return self._update(
            descriptor,
            status="connected",
            error=None,
            retry_count=retry_count,
            last_attempt=now,
            last_success=now,
            tools=list(result.tools),
        )

    def _update(
        self,
        descriptor: ServerDescriptor,
        *,
        status: ServerStatus,
        retry_count: int,
        last_attempt: int,
        error: str | None = None,
        last_success: int | None = None,
        tools: list[str] | None = None,
    ) -> ReadinessEntry:
        current = self.cache.get(descriptor.scope, descriptor.name) or ReadinessEntry(
            name=descriptor.name, scope=descriptor.scope
        )
        entry = replace(
            current,
            status=status,
            error=error,
            retry_count=retry_count,
            last_attempt=last_attempt,
            last_success=last_success if last_success is not None else current.last_success,
            tools=tools if tools is not None else list(current.tools),
        )
        self.cache.set(entry)
        self.bus.publish(
            ServerStatusChanged(
                name=entry.name,
                scope=entry.scope,
                status=entry.status,
                error=entry.error,
                retry_count=entry.retry_count,
                last_attempt=entry.last_attempt,
                last_success=entry.last_success,
                tools=list(entry.tools),
            )
        )
        return entry
