# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Cooperative cancellation for workflow executions.

Every suspending operation the engine issues (delays, command runs,
network calls) goes through a CancellationToken so abort() can interrupt it.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, TypeVar

from cmdflow.core.errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    """One token per workflow execution"""

    def __init__(self):
        self._event = asyncio.Event()
        self._callbacks: List[Callable[[], None]] = []
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Aborted") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run once on cancel; returns a remover"""
        if self.cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError(self.reason or "Aborted")

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """
        Sleep unless cancelled first.

        Raises:
            CancellationError: Token cancelled before the delay elapsed
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        raise CancellationError(self.reason or "Aborted")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await awaitable, racing it against cancellation.

        The losing operation is cancelled; a result arriving after abort is discarded.

        Raises:
            CancellationError: Token cancelled first
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if not waiter.done():
                waiter.cancel()

        if self.cancelled:
            if not work.done():
                work.cancel()
            raise CancellationError(self.reason or "Aborted")
        return work.result()
