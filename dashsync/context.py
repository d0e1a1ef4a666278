"""
Application context: one explicitly wired instance of every component.

Nothing in the package keeps module-level state; each AppContext owns its
own token, cache and in-flight tables, so tests can build isolated
instances side by side.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from config.settings import Settings
from dashsync.api_client import ApiClient, RequestsTransport, Transport
from dashsync.auth import AuthSession, TokenMirror, TokenStore
from dashsync.cache import CacheManager, TTLCache
from dashsync.coordination import CancellationToken, RequestCoordinator
from dashsync.errors import ApiError
from dashsync.redirects_client import RedirectsClient
from dashsync.sync_state import RedirectsStore, TdsStore, ZoneSyncReconciler
from dashsync.tds_client import TdsClient

logger = logging.getLogger("dashsync")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for applications embedding the package."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class AppContext:
    """
    Wires settings, credentials, transport, coordination, cache, clients
    and stores, and exposes the facade UI code calls into.
    """

    def __init__(
        self,
        settings: Settings,
        token_store: TokenStore,
        api: ApiClient,
        coordinator: RequestCoordinator,
        session: AuthSession,
        cache: TTLCache,
        cache_manager: CacheManager,
        redirects: RedirectsClient,
        tds: TdsClient,
        redirects_store: RedirectsStore,
        tds_store: TdsStore,
        reconciler: ZoneSyncReconciler,
        transport: Optional[Transport] = None,
    ):
        self.settings = settings
        self.token_store = token_store
        self.api = api
        self.coordinator = coordinator
        self.session = session
        self.cache = cache
        self.cache_manager = cache_manager
        self.redirects = redirects
        self.tds = tds
        self.redirects_store = redirects_store
        self.tds_store = tds_store
        self.reconciler = reconciler
        self.transport = transport

        coordinator.refresh_credentials = session.refresh
        coordinator.on_auth_failure = session.handle_auth_failure
        session.on_logout = self._on_logout

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> "AppContext":
        """
        Build a context.

        Args:
            settings: Explicit settings (environment-loaded when None)
            transport: Network transport (requests-backed when None)
            clock: Monotonic clock for cache expiry and mutation stamps
            wall_clock: Clock for credential issue times (persisted)
        """
        settings = settings or Settings()
        transport = transport or RequestsTransport(timeout=settings.request_timeout_seconds)

        mirror = TokenMirror(settings.token_mirror_path) if settings.token_mirror_path else None
        token_store = TokenStore(mirror=mirror, clock=wall_clock)
        api = ApiClient(settings.api_base_url, token_store, transport)
        coordinator = RequestCoordinator()
        session = AuthSession(api, token_store, coordinator, max_age=settings.token_max_age_seconds)

        cache = TTLCache(default_ttl=settings.default_cache_ttl_seconds, clock=clock)
        cache_manager = CacheManager(cache, coordinator)
        redirects = RedirectsClient(api, cache_manager)
        tds = TdsClient(api, cache_manager)

        redirects_store = RedirectsStore(coordinator, redirects, clock=clock)
        tds_store = TdsStore(coordinator, tds, clock=clock)
        reconciler = ZoneSyncReconciler(redirects_store, redirects, coordinator)

        return cls(
            settings=settings,
            token_store=token_store,
            api=api,
            coordinator=coordinator,
            session=session,
            cache=cache,
            cache_manager=cache_manager,
            redirects=redirects,
            tds=tds,
            redirects_store=redirects_store,
            tds_store=tds_store,
            reconciler=reconciler,
            transport=transport,
        )

    def _on_logout(self) -> None:
        cancelled = self.coordinator.cancel_all("logged out")
        cleared = self.cache.clear()
        self.redirects_store.clear()
        self.tds_store.clear()
        logger.info(f"Session ended: {cancelled} call(s) cancelled, {cleared} cache entries dropped")

    # ------------------------------------------------------------------
    # Cache facade
    # ------------------------------------------------------------------

    def get_cached(self, key: str, default: Any = None) -> Any:
        return self.cache.get(key, default)

    def set_cache(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        self.cache.set(key, value, ttl)

    def invalidate_cache(self, key: str) -> bool:
        return self.cache.invalidate(key)

    def invalidate_cache_by_prefix(self, prefix: str) -> int:
        return self.cache.invalidate_by_prefix(prefix)

    # ------------------------------------------------------------------
    # Coordination facade
    # ------------------------------------------------------------------

    async def with_in_flight(self, key: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await self.coordinator.with_in_flight(key, operation)

    async def safe_call(
        self,
        operation: Callable[[CancellationToken], Awaitable[Any]],
        lock_key: Optional[str] = None,
        abort_key: Optional[str] = None,
        retry_on_401: bool = True,
        on_error: Optional[Callable[[ApiError], None]] = None,
        apply: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        return await self.coordinator.safe_call(
            operation,
            lock_key=lock_key,
            abort_key=abort_key,
            retry_on_401=retry_on_401,
            on_error=on_error,
            apply=apply,
        )

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            close()
