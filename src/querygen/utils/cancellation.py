"""
Abort signal shared by every outbound call of one generation run.

The orchestrator checks the signal between stages; the LLM and embedding
clients race their provider call against it so an abort interrupts a
request in flight instead of waiting for the response.
"""

import asyncio
import inspect
from typing import Awaitable, Optional, TypeVar

from ..domain.errors import OperationCancelledError

T = TypeVar("T")


class AbortSignal:
    """
    One-shot cancellation flag.

    Usage:
        signal = AbortSignal()
        task = asyncio.create_task(service.generate(request, abort=signal))
        signal.abort("client disconnected")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(
                f"Operation cancelled: {self.reason}",
                details={"reason": self.reason},
            )

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the signal fires first.

        Raises:
            OperationCancelledError: If the signal fires before completion
        """
        if self.aborted:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_aborted()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if not work.done():
            work.cancel()
            try:
                await work
            except asyncio.CancelledError:
                pass
            self.raise_if_aborted()

        return work.result()


async def guarded(awaitable: Awaitable[T], abort: Optional[AbortSignal]) -> T:
    """Await directly when no signal is given, otherwise through the signal."""
    if abort is None:
        return await awaitable
    return await abort.guard(awaitable)
