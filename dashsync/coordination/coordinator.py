"""
Request coordination: deduplication, exclusivity and auth-expiry retry.

The coordinator owns no domain data. Its only shared mutable state is the
in-flight registration tables kept by the coalescer and the exclusive
runner, and every registration lives exactly as long as the call it serves.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from dashsync.errors import Aborted, ApiError, AuthExpired, normalize_error
from .coalescer import RequestCoalescer
from .exclusive import ExclusiveRunner
from .tokens import CancellationToken

logger = logging.getLogger("coordination.coordinator")

AUTH_REFRESH_KEY = "auth-refresh"


class RequestCoordinator:
    """
    Wraps raw network operations with:
    - In-flight deduplication (run_deduplicated / with_in_flight)
    - "Last wins" exclusivity (run_exclusive)
    - A single credential refresh and replay on auth expiry (run_with_auth_retry)
    - safe_call, the composed entry point UI code uses for any network call

    ``refresh_credentials`` and ``on_auth_failure`` are wired by the
    application context once the auth session exists.
    """

    def __init__(
        self,
        refresh_credentials: Optional[Callable[[], Awaitable[Any]]] = None,
        on_auth_failure: Optional[Callable[[ApiError], Awaitable[None]]] = None,
    ):
        self._coalescer = RequestCoalescer()
        self._exclusive = ExclusiveRunner()
        self.refresh_credentials = refresh_credentials
        self.on_auth_failure = on_auth_failure

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def run_deduplicated(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """Join the operation already registered under ``key``, or run and register this one."""
        return await self._coalescer.get_or_fetch(key, operation)

    with_in_flight = run_deduplicated

    async def run_exclusive(
        self,
        key: str,
        operation: Callable[[CancellationToken], Awaitable[Any]],
        apply: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Supersede any call registered under ``key`` and run this one."""
        return await self._exclusive.run(key, operation, apply)

    async def run_with_auth_retry(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``operation``; on AuthExpired refresh once and replay once.

        A second AuthExpired is terminal: it is re-raised with
        ``terminal=True`` after the session-reset hook runs. Every other
        failure propagates untouched.
        """
        try:
            return await operation()
        except AuthExpired:
            if self.refresh_credentials is None:
                raise
            logger.info("Authorization expired, refreshing credentials")

        try:
            await self.refresh_credentials()
        except Exception as e:
            logger.warning(f"Credential refresh failed: {e}")
            error = normalize_error(e)
            if isinstance(error, AuthExpired):
                error.terminal = True
            await self._auth_failed(error)
            raise

        try:
            return await operation()
        except AuthExpired as e:
            e.terminal = True
            logger.error("Authorization expired again after refresh; ending session")
            await self._auth_failed(e)
            raise

    async def _auth_failed(self, error: ApiError) -> None:
        if self.on_auth_failure is not None:
            await self.on_auth_failure(error)

    # ------------------------------------------------------------------
    # Composed entry point
    # ------------------------------------------------------------------

    async def safe_call(
        self,
        operation: Callable[[CancellationToken], Awaitable[Any]],
        lock_key: Optional[str] = None,
        abort_key: Optional[str] = None,
        retry_on_401: bool = True,
        on_error: Optional[Callable[[ApiError], None]] = None,
        apply: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """
        Run a network operation with the coordination the call site asks for.

        Args:
            operation: Callable taking a CancellationToken (pass it to the
                API client so a superseded request is abandoned)
            lock_key: Deduplicate concurrent calls under this key (form submits)
            abort_key: "Last wins" under this key (detail loads, selection changes)
            retry_on_401: Refresh credentials and replay once on auth expiry
            on_error: Called with the normalized error before it is raised
            apply: Called with the result only if it is still current

        Returns:
            The operation's result, or None when this call was superseded
            under ``abort_key`` (callers must not surface their own cancellation)

        Raises:
            ApiError: Normalized failure
        """

        async def attempt(token: CancellationToken) -> Any:
            if retry_on_401:
                return await self.run_with_auth_retry(lambda: operation(token))
            return await operation(token)

        async def run() -> Any:
            if abort_key:
                return await self.run_exclusive(abort_key, attempt, apply)
            result = await attempt(CancellationToken())
            if apply is not None:
                apply(result)
            return result

        try:
            if lock_key:
                return await self.run_deduplicated(lock_key, run)
            return await run()
        except Exception as e:
            error = normalize_error(e)
            if isinstance(error, Aborted) and error.superseded:
                logger.debug(f"Superseded call swallowed: {error.key}")
                return None
            if on_error is not None:
                on_error(error)
            if error is e:
                raise
            raise error from e

    # ------------------------------------------------------------------
    # Cancellation and introspection
    # ------------------------------------------------------------------

    def cancel(self, key: str, reason: str = "cancelled") -> bool:
        """Cancel the current exclusive call under ``key``."""
        return self._exclusive.cancel(key, reason)

    def cancel_all(self, reason: str = "cancelled") -> int:
        """Cancel every exclusive call (logout, teardown)."""
        return self._exclusive.cancel_all(reason)

    def is_in_flight(self, key: str) -> bool:
        return self._coalescer.is_in_flight(key)

    def current_generation(self, key: str) -> Optional[int]:
        return self._exclusive.current_generation(key)

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        return {
            "coalescer": self._coalescer.get_stats(),
            "exclusive": self._exclusive.get_stats(),
        }
