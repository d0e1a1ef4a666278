"""
Cooperative cancellation signal handed to exclusive operations.
"""
import asyncio
import logging
from typing import Callable, List, Optional

from dashsync.errors import Aborted

logger = logging.getLogger("coordination.tokens")


class CancellationToken:
    """
    Signals an operation that its result is no longer wanted.

    Cancellation is advisory: the operation may check ``cancelled`` or call
    ``raise_if_cancelled()`` at its own suspension points, and registered
    callbacks can abort the underlying transport. Whether or not the
    operation stops, the coordinator discards whatever it produces.
    """

    def __init__(self, key: Optional[str] = None):
        self.key = key
        self.reason: Optional[str] = None
        self.superseded = False
        self._cancelled = False
        self._event = asyncio.Event()
        self._callbacks: List[Callable[["CancellationToken"], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled", superseded: bool = False) -> None:
        """Signal cancellation. Idempotent; callbacks run once."""
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        self.superseded = superseded
        self._event.set()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                # Transport abort is best-effort; the result is discarded regardless
                logger.warning(f"Cancellation callback failed for {self.key}: {e}")

    def add_callback(self, callback: Callable[["CancellationToken"], None]) -> None:
        """Register a callback to run on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback(self)
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Aborted(
                f"Request was cancelled ({self.reason})",
                key=self.key,
                superseded=self.superseded,
            )

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled: {self.reason}" if self._cancelled else "active"
        return f"CancellationToken(key={self.key!r}, {state})"
