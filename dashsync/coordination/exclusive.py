"""
"Last wins" execution under exclusive keys.

A newer call under a key supersedes any unresolved older one. The older
call is signalled through its CancellationToken and abandoned; whatever it
eventually produces is discarded, enforced by a generation check at apply
time rather than by trusting the transport to stop.
"""
import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from dashsync.errors import Aborted
from .tokens import CancellationToken

logger = logging.getLogger("coordination.exclusive")


@dataclass
class ExclusiveCall:
    """Bookkeeping for one call under an exclusive key."""
    key: str
    generation: int
    token: CancellationToken
    started_at: float = field(default_factory=time.time)


def _consume_outcome(task: "asyncio.Future[Any]") -> None:
    # Abandoned tasks: read the outcome so asyncio does not log it as lost
    if not task.cancelled():
        task.exception()


class ExclusiveRunner:
    """
    Runs operations so that only the most recently issued one per key is honored.

    Generations come from one runner-wide counter, so they are strictly
    increasing within every key without keeping per-key state after the
    last call for that key completes.
    """

    def __init__(self):
        self._active: Dict[str, ExclusiveCall] = {}
        self._generations = itertools.count(1)

    def is_current(self, call: ExclusiveCall) -> bool:
        return self._active.get(call.key) is call

    def current_generation(self, key: str) -> Optional[int]:
        call = self._active.get(key)
        return call.generation if call else None

    async def run(
        self,
        key: str,
        operation: Callable[[CancellationToken], Awaitable[Any]],
        apply: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """
        Run ``operation(token)`` as the current call for ``key``.

        Args:
            key: Exclusive key
            operation: Callable taking the call's CancellationToken
            apply: Optional callback receiving the result, invoked only if
                this call is still current when the result arrives

        Returns:
            The operation's result

        Raises:
            Aborted: This call was superseded (``superseded=True``) or
                explicitly cancelled before it resolved
        """
        call = ExclusiveCall(
            key=key,
            generation=next(self._generations),
            token=CancellationToken(key),
        )

        previous = self._active.get(key)
        if previous is not None:
            logger.debug(
                f"Superseding {key} generation {previous.generation} "
                f"with generation {call.generation}"
            )
            previous.token.cancel(f"superseded by generation {call.generation}", superseded=True)
        self._active[key] = call

        try:
            try:
                result = await self._race(call, operation)
            except Aborted:
                raise
            except Exception:
                # A superseded caller never sees its own late failure
                if not self.is_current(call) and call.token.superseded:
                    raise self._discarded(call) from None
                raise

            if not self.is_current(call):
                raise self._discarded(call)

            if apply is not None:
                apply(result)
            return result
        finally:
            if self._active.get(key) is call:
                del self._active[key]

    async def _race(
        self,
        call: ExclusiveCall,
        operation: Callable[[CancellationToken], Awaitable[Any]],
    ) -> Any:
        """Await the operation, returning early if the token is cancelled first."""
        task = asyncio.ensure_future(operation(call.token))
        cancelled = asyncio.ensure_future(call.token.wait())
        try:
            done, _ = await asyncio.wait({task, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            cancelled.cancel()
            raise

        if task in done:
            cancelled.cancel()
            return task.result()

        # Best-effort abort; a result arriving later is dropped by _consume_outcome
        task.cancel()
        task.add_done_callback(_consume_outcome)
        raise self._discarded(call)

    @staticmethod
    def _discarded(call: ExclusiveCall) -> Aborted:
        logger.debug(f"Discarding outcome of {call.key} generation {call.generation}")
        return Aborted(
            f"Request was cancelled ({call.token.reason or 'superseded'})",
            key=call.key,
            superseded=call.token.superseded,
        )

    def cancel(self, key: str, reason: str = "cancelled") -> bool:
        """
        Cancel the current call for ``key`` without a successor.

        Returns:
            True if a call was cancelled
        """
        call = self._active.pop(key, None)
        if call is None:
            return False
        logger.info(f"Cancelled {key} generation {call.generation}: {reason}")
        call.token.cancel(reason, superseded=False)
        return True

    def cancel_all(self, reason: str = "cancelled") -> int:
        """Cancel every current call. Returns the number cancelled."""
        keys = list(self._active.keys())
        for key in keys:
            self.cancel(key, reason)
        return len(keys)

    @property
    def active_keys(self) -> list:
        return list(self._active.keys())

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_exclusive": len(self._active),
            "generations": {k: c.generation for k, c in self._active.items()},
        }
