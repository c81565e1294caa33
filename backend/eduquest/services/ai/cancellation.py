"""
Caller-owned cancellation tokens.

A token is the only way an in-flight request is abandoned early. Components
never poll it in a loop: they either check it at entry (`raise_if_cancelled`)
or register a callback / await `wait()` so that a pending timer, backoff
sleep or network call is unwound the moment `cancel()` is called.
"""
import asyncio
from typing import Callable, Dict, Optional

from eduquest.services.ai.errors import OperationCancelledError


class CancellationToken:
    """Single-shot cancellation signal for one logical request."""

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._next_handle = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def listener_count(self) -> int:
        """Number of currently registered callbacks."""
        return len(self._callbacks)

    def cancel(self, reason: Optional[str] = None) -> None:
        """Request cancellation. Subsequent calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run `callback` once when the token is cancelled.

        Fires immediately if the token is already cancelled. Returns a
        function that detaches the callback; calling it twice is harmless.
        """
        if self._cancelled:
            callback()
            return lambda: None

        handle = self._next_handle
        self._next_handle += 1
        self._callbacks[handle] = callback

        def unregister() -> None:
            self._callbacks.pop(handle, None)

        return unregister

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError()

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        if self._cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()

        def _wake() -> None:
            if not waiter.done():
                waiter.set_result(None)

        unregister = self.register(_wake)
        try:
            await waiter
        finally:
            unregister()

    async def sleep(self, delay: float) -> None:
        """
        Sleep for `delay` seconds, waking early on cancellation.

        Raises:
            OperationCancelledError: if the token fires before or during the sleep
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError()

    def linked(self) -> "CancellationToken":
        """
        Create a child token cancelled together with this one.

        The child may also be cancelled on its own without affecting the parent.
        """
        child = CancellationToken()
        unregister = self.register(lambda: child.cancel(self._reason))
        child.register(unregister)
        return child


async def cancellable_sleep(delay: float, token: Optional[CancellationToken] = None) -> None:
    """Sleep that honours an optional token."""
    if token is None:
        await asyncio.sleep(delay)
    else:
        await token.sleep(delay)
