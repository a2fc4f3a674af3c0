"""Tracking for remote operations that only report completion via polling.

The panel acknowledges power, reinstall and backup requests immediately and
finishes them later. ``issue`` runs the initiating call right away and hands
back a ``PendingOperation`` whose ``wait()`` polls for completion at most once,
no matter how many callers await it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from ..errors import OperationTimeout

logger = logging.getLogger(__name__)

R = TypeVar("R")
C = TypeVar("C")
T = TypeVar("T")


class PendingOperation(Generic[R, C]):
    """Immediate response plus a lazily started, memoized completion."""

    def __init__(self, response: R, completer: Callable[[], Awaitable[C]] | None = None):
        self.response = response
        self._completer = completer
        self._task: asyncio.Future[C] | None = None

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def _start(self) -> asyncio.Future[C]:
        if self._task is None:
            if self._completer is None:
                future: asyncio.Future[C] = asyncio.get_running_loop().create_future()
                future.set_result(None)  # type: ignore[arg-type]
                self._task = future
            else:
                self._task = asyncio.ensure_future(self._completer())
                # Mark the outcome retrieved so an abandoned wait never logs
                # "exception was never retrieved".
                self._task.add_done_callback(_consume_exception)
        return self._task

    async def wait(self) -> C:
        """Start completion on first call; every caller sees the same outcome."""
        task = self._start()
        return await asyncio.shield(task)


def _consume_exception(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


async def issue(
    initiate: Callable[[], Awaitable[R]],
    complete: Callable[[R], Awaitable[C]] | None = None,
) -> PendingOperation[R, C]:
    """Run ``initiate`` now and defer ``complete`` until someone waits.

    Errors from ``initiate`` propagate to the caller of ``issue``.
    """
    response = await initiate()
    if complete is None:
        return PendingOperation(response)
    return PendingOperation(response, lambda: complete(response))


def completed(response: R) -> PendingOperation[R, None]:
    """A PendingOperation that is already finished."""
    return PendingOperation(response)


async def poll_until(
    probe: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    *,
    interval: float,
    timeout: float,
    description: str,
) -> T:
    """Probe every ``interval`` seconds until ``predicate`` holds.

    Raises OperationTimeout once ``timeout`` seconds have elapsed; the probe
    is not called again after that.
    """
    if timeout <= 0:
        raise ValueError("poll_until requires a positive timeout")
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0
    while True:
        value = await probe()
        attempts += 1
        if predicate(value):
            logger.debug("%s satisfied after %s probe(s)", description, attempts)
            return value
        remaining = deadline - loop.time()
        if remaining <= 0:
            logger.warning("%s timed out after %s probe(s)", description, attempts)
            raise OperationTimeout(description, timeout)
        await asyncio.sleep(min(interval, remaining))
