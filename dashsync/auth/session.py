"""
Login, logout and credential refresh orchestration.
"""
import logging
from typing import Callable, Optional

import pydantic

from dashsync.coordination import AUTH_REFRESH_KEY, RequestCoordinator
from dashsync.errors import ApiError, AuthExpired, normalize_error
from dashsync.schemas import LoginResponse, MeResponse, UserProfile
from .token_store import TokenStore

logger = logging.getLogger("auth.session")

DEFAULT_MAX_AGE_SECONDS = 10 * 60


class AuthSession:
    """
    Owns the session lifecycle on top of a TokenStore.

    State transitions:
    - unauthenticated -> authenticated on login
    - authenticated -> refreshing on auth expiry or when the credential is too old
    - refreshing -> authenticated on success, unauthenticated on any failure

    Only one refresh runs at a time: concurrent callers join the refresh
    already in flight under ``AUTH_REFRESH_KEY``.
    """

    def __init__(
        self,
        api,
        token_store: TokenStore,
        coordinator: RequestCoordinator,
        max_age: float = DEFAULT_MAX_AGE_SECONDS,
        on_logout: Optional[Callable[[], None]] = None,
    ):
        self.api = api
        self.token_store = token_store
        self.coordinator = coordinator
        self.max_age = max_age
        self.on_logout = on_logout
        self.user: Optional[UserProfile] = None

    @property
    def is_logged_in(self) -> bool:
        return self.token_store.get() is not None and self.user is not None

    async def login(self, email: str, password: str, turnstile_token: Optional[str] = None) -> LoginResponse:
        payload: dict = {"email": email, "password": password}
        if turnstile_token:
            payload["turnstile_token"] = turnstile_token

        response = LoginResponse.model_validate(await self.api.post("/auth/login", payload))
        if response.access_token:
            self.token_store.set(response.access_token)
        if response.user:
            self.user = response.user
        logger.info(f"Logged in as {email}")
        return response

    async def refresh(self) -> LoginResponse:
        """Refresh the credential, joining a refresh already in flight."""
        return await self.coordinator.run_deduplicated(AUTH_REFRESH_KEY, self._refresh)

    async def _refresh(self) -> LoginResponse:
        self.token_store.mark_refreshing()
        logger.info("Refreshing credential")
        try:
            response = LoginResponse.model_validate(await self.api.post("/auth/refresh"))
            if not response.access_token:
                raise AuthExpired(response.model_dump(), response.message or "Refresh returned no credential")
        except Exception as e:
            logger.warning(f"Refresh failed: {e}")
            self.token_store.clear()
            self.user = None
            error = normalize_error(e)
            if error is e:
                raise
            raise error from e

        self.token_store.set(response.access_token)
        if response.user:
            self.user = response.user
        logger.info("Credential refreshed")
        return response

    async def ensure_fresh(self) -> bool:
        """
        Refresh pre-emptively when the credential is older than ``max_age``.

        Returns:
            True if a refresh ran
        """
        if not self.token_store.is_older_than(self.max_age):
            return False
        logger.info("Credential past max age, refreshing pre-emptively")
        await self.refresh()
        return True

    async def me(self) -> Optional[UserProfile]:
        """Load the current user profile (with one refresh on auth expiry)."""
        body = await self.coordinator.run_with_auth_retry(lambda: self.api.get("/auth/me"))
        try:
            self.user = MeResponse.model_validate(body).profile()
        except pydantic.ValidationError as e:
            raise normalize_error(e) from e
        return self.user

    async def restore(self) -> bool:
        """
        Restore a session after a restart.

        Uses the mirrored credential when there is one, otherwise asks the
        API for a fresh credential. Returns True if the session is usable.
        """
        credential = self.token_store.restore()
        if credential is None:
            try:
                await self.refresh()
            except ApiError as e:
                logger.info(f"No session to restore: {e.message}")
                return False
            return True

        try:
            await self.ensure_fresh()
            await self.me()
        except ApiError as e:
            logger.info(f"Restored credential rejected: {e.message}")
        return self.token_store.get() is not None

    async def logout(self) -> None:
        """End the session; a failing logout request never blocks it."""
        try:
            await self.api.post("/auth/logout")
        except ApiError as e:
            logger.debug(f"Logout request failed: {e}")
        self.reset()
        logger.info("Logged out")

    def reset(self) -> None:
        """Drop credential and user, then run the logout hook."""
        self.token_store.clear()
        self.user = None
        if self.on_logout is not None:
            self.on_logout()

    async def handle_auth_failure(self, error: ApiError) -> None:
        """Coordinator hook for terminal auth failures: force a session reset."""
        logger.error(f"Session reset after auth failure: {error.code}")
        self.reset()
