"""
Request coalescing to prevent duplicate upstream API calls.

When multiple concurrent callers ask for the same logical operation, only
one underlying call is made and all callers share its outcome.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("coordination.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress operation."""
    task: "asyncio.Future[Any]"
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent callers under the same key share one operation.

    Pattern:
    - First caller for a key starts the operation as a task and registers it
    - Later callers for the same key await the registered task
    - On completion every caller receives the same value or the same exception
    - The registration is removed when the task finishes, however it finishes

    Registration happens without any await between the lookup and the
    insert, so two callers on the event loop can never both register.
    Every caller awaits the task through ``asyncio.shield``: a caller that is
    cancelled (for example a superseded exclusive call) stops waiting, but the
    shared operation keeps running for everyone else.

    Usage:
        coalescer = RequestCoalescer()
        rules = await coalescer.get_or_fetch(
            "tds:rules:v1",
            lambda: client.fetch("GET", "/tds/rules"),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight operation or start a new one.

        Args:
            key: Coordination key for this operation
            fetch_fn: Zero-argument callable returning an awaitable

        Returns:
            The result (shared among all concurrent callers)

        Raises:
            Exception: Any error from fetch_fn, identical for every caller
        """
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            logger.debug(f"Coalescing request for {key} (waiters: {in_flight.waiter_count})")
            return await asyncio.shield(in_flight.task)

        logger.debug(f"Initiating operation for {key}")
        in_flight = InFlightRequest(task=asyncio.ensure_future(fetch_fn()))
        self._in_flight[key] = in_flight
        in_flight.task.add_done_callback(lambda task: self._finished(key, in_flight))
        return await asyncio.shield(in_flight.task)

    def _finished(self, key: str, in_flight: InFlightRequest) -> None:
        if self._in_flight.get(key) is in_flight:
            del self._in_flight[key]

        task = in_flight.task
        if task.cancelled():
            logger.debug(f"Operation cancelled for {key}")
            return
        # Reading the exception marks it retrieved even when every caller went away
        error = task.exception()
        if error is not None:
            logger.warning(f"Operation failed for {key}: {error}")

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight operations."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
            "waiters": {k: v.waiter_count for k, v in self._in_flight.items()},
        }
