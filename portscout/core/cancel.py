"""
Scan-wide cancellation
One token per scan, passed into every probe task at creation
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class ProbeCancelled(Exception):
    """Raised inside a probe when the scan is cancelled"""


class CancellationToken:
    """Cancellation signal checked by probes at each suspension point"""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise ProbeCancelled()

    async def wait(self):
        await self._event.wait()

    async def guard(self, aw: Awaitable[T], timeout: Optional[float] = None,
                    release: Optional[Callable[[T], None]] = None) -> T:
        """Await `aw`, abandoning it when the token fires or the timeout expires

        Raises ProbeCancelled on cancellation and asyncio.TimeoutError on
        timeout; the abandoned awaitable is cancelled in both cases. If it
        still produces a result, `release` is called with it.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            waiter.cancel()
            _abandon(task, release)
            raise

        waiter.cancel()
        if task in done:
            return task.result()

        _abandon(task, release)
        if waiter in done:
            raise ProbeCancelled()
        raise asyncio.TimeoutError()


def _abandon(task: asyncio.Future, release: Optional[Callable]):
    task.cancel()
    if release is None:
        return

    def on_done(fut):
        if not fut.cancelled() and fut.exception() is None:
            release(fut.result())

    task.add_done_callback(on_done)
