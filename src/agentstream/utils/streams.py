"""Stream utilities for merging and cancelling async iterators."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from agentstream.utils.cancellation import CancellationToken


@asynccontextmanager
async def merge_side_queue[T, V](
    stream: AsyncIterator[T],
    side_queue: asyncio.Queue[V],
) -> AsyncIterator[AsyncIterator[T | V]]:
    """Interleave ``stream`` with items put on ``side_queue`` while it runs.

    The next stream item and the next side item are awaited together, so a
    side item is delivered even while the stream is suspended waiting for the
    consumer to react to it (an approval request raised from inside the
    engine, for example). The stream is pulled one item at a time.

    Once the stream ends, side items already queued are still delivered. An
    exception raised by the stream is re-raised after them.

    Args:
        stream: The main async iterator, e.g. raw engine events
        side_queue: Queue of side-channel items, e.g. approval chunks
    """
    iterator = aiter(stream)
    waiters: dict[str, asyncio.Future[Any]] = {}

    async def merged() -> AsyncIterator[T | V]:
        failure: Exception | None = None
        waiters["stream"] = asyncio.ensure_future(anext(iterator))
        waiters["side"] = asyncio.ensure_future(side_queue.get())
        while True:
            await asyncio.wait(list(waiters.values()), return_when=asyncio.FIRST_COMPLETED)
            if waiters["side"].done():
                side_item = waiters.pop("side").result()
                yield side_item
                waiters["side"] = asyncio.ensure_future(side_queue.get())
            if not waiters["stream"].done():
                continue
            next_item = waiters.pop("stream")
            try:
                item = next_item.result()
            except StopAsyncIteration:
                break
            except Exception as e:  # noqa: BLE001
                failure = e
                break
            yield item
            waiters["stream"] = asyncio.ensure_future(anext(iterator))

        side = waiters.pop("side")
        if side.done():
            yield side.result()
        else:
            side.cancel()
        while not side_queue.empty():
            yield side_queue.get_nowait()
        if failure is not None:
            raise failure

    try:
        yield merged()
    finally:
        pending = list(waiters.values())
        for waiter in pending:
            waiter.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if (aclose := getattr(iterator, "aclose", None)) is not None:
            with contextlib.suppress(RuntimeError):
                await aclose()


async def iterate_until_cancelled[T](
    stream: AsyncIterator[T],
    token: CancellationToken,
) -> AsyncIterator[T]:
    """Yield from ``stream`` until it is exhausted or ``token`` is cancelled.

    Each wait for the next item is raced against the token, so a stream that
    is suspended indefinitely still stops promptly. The token is checked again
    after every resumption; an item that arrives after cancellation is dropped.
    """
    iterator = aiter(stream)
    try:
        while not token.cancelled:
            next_item = asyncio.ensure_future(anext(iterator))
            cancel_wait = asyncio.ensure_future(token.wait())
            done, _ = await asyncio.wait(
                {next_item, cancel_wait},
                return_when=asyncio.FIRST_COMPLETED,
            )
            cancel_wait.cancel()
            if next_item not in done:
                next_item.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                    await next_item
                return
            try:
                item = next_item.result()
            except StopAsyncIteration:
                return
            if token.cancelled:
                return
            yield item
    finally:
        if (aclose := getattr(iterator, "aclose", None)) is not None:
            with contextlib.suppress(RuntimeError):
                await aclose()
