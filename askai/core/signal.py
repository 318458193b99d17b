"""Cancellation primitives.

AbortSignal mirrors the usual "is aborted" + "subscribe to abort" contract so
the core never depends on a particular transport's cancellation mechanism.
"""

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from askai.utils.errors import AbortError

T = TypeVar("T")


class AbortSignal:
    """Read-only side of an AbortController."""

    def __init__(self):
        self._event = asyncio.Event()
        self._listeners: List[Callable[[], None]] = []
        self.reason: Any = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Run callback on abort, or right away if already aborted"""
        if self.aborted:
            callback()
            return
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def throw_if_aborted(self) -> None:
        if self.aborted:
            raise AbortError(reason=self.reason)

    async def wait(self) -> None:
        await self._event.wait()

    def _fire(self, reason: Any) -> None:
        if self.aborted:
            return
        self.reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for callback in listeners:
            callback()


class AbortController:
    """Owns an AbortSignal and the right to trigger it."""

    def __init__(self):
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        self.signal._fire(reason)


def link_signal(source: Optional[AbortSignal], controller: AbortController) -> Callable[[], None]:
    """Abort controller with source's reason whenever source aborts.

    Returns a function that undoes the link.
    """
    if source is None:
        return lambda: None

    def forward() -> None:
        controller.abort(source.reason)

    source.add_listener(forward)
    return lambda: source.remove_listener(forward)


async def run_abortable(aw: Awaitable[T], signal: Optional[AbortSignal]) -> T:
    """Await aw, cancelling it as soon as signal fires.

    Cancelling the task unwinds any `async with` blocks inside it, which is
    what closes the underlying HTTP connection.
    """
    if signal is None:
        return await aw

    if signal.aborted:
        if asyncio.iscoroutine(aw):
            aw.close()
        raise AbortError(reason=signal.reason)

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise AbortError(reason=signal.reason)
