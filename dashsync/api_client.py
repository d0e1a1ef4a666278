"""
HTTP client for the control-plane API.

Transport is pluggable: the default RequestsTransport runs a blocking
requests.Session call in a worker thread so the event loop stays
cooperative, and tests substitute a scripted transport.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dashsync.coordination import CancellationToken
from dashsync.errors import NetworkError, http_error_for

logger = logging.getLogger("api_client")

# Only these are replayed after a connection failure
RETRY_METHODS = ("GET",)


@dataclass
class TransportResponse:
    """A received response; ``body`` is parsed JSON or None."""
    status: int
    reason: str = ""
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    async def __call__(
        self,
        method: str,
        url: str,
        body: Any,
        headers: Dict[str, str],
    ) -> TransportResponse:
        ...


def parse_json_safe(response: requests.Response) -> Any:
    """Parse a JSON body, returning None for empty or unparsable bodies."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


class RequestsTransport:
    """Default transport backed by a shared requests.Session."""

    def __init__(self, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    async def __call__(
        self,
        method: str,
        url: str,
        body: Any,
        headers: Dict[str, str],
    ) -> TransportResponse:
        return await asyncio.to_thread(self._send, method, url, body, headers)

    def _send(self, method: str, url: str, body: Any, headers: Dict[str, str]) -> TransportResponse:
        request = self._request_with_retry if method in RETRY_METHODS else self._request
        try:
            response = request(method, url, body, headers)
        except requests.RequestException as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise NetworkError(details=str(e)) from e

        return TransportResponse(
            status=response.status_code,
            reason=response.reason or "",
            body=parse_json_safe(response),
        )

    def _request(self, method: str, url: str, body: Any, headers: Dict[str, str]) -> requests.Response:
        return self.session.request(
            method,
            url,
            json=body,
            headers=headers,
            timeout=self.timeout,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(requests.ConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _request_with_retry(self, method: str, url: str, body: Any, headers: Dict[str, str]) -> requests.Response:
        """
        Make an idempotent request, retrying connection failures with
        exponential backoff. HTTP error statuses are returned, not retried.
        """
        return self._request(method, url, body, headers)

    def close(self) -> None:
        self.session.close()


class ApiClient:
    """
    Authenticated access to the control plane.

    The bearer credential is read from the token store at send time, so a
    refresh that completes while other calls are in flight is picked up by
    the next call without any propagation step.
    """

    def __init__(self, base_url: str, token_store, transport: Transport):
        self.base_url = base_url.rstrip("/")
        self.token_store = token_store
        self.transport = transport

    def _headers(self, has_body: bool) -> Dict[str, str]:
        headers = {"accept": "application/json"}
        token = self.token_store.get_token()
        if token:
            headers["authorization"] = f"Bearer {token}"
        if has_body:
            headers["content-type"] = "application/json"
        return headers

    async def fetch(
        self,
        method: str,
        path: str,
        body: Any = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Perform one request and return the parsed body.

        Raises:
            Aborted: ``token`` was cancelled before sending or while in flight
            NetworkError: No response received
            HttpError: Non-success status (AuthExpired for 401)
        """
        if token is not None:
            token.raise_if_cancelled()

        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {path}")
        response = await self.transport(method, url, body, self._headers(body is not None))

        if token is not None:
            token.raise_if_cancelled()

        if not response.ok:
            logger.info(f"{method} {path} -> {response.status}")
            raise http_error_for(response.status, response.body, response.reason)

        return response.body if response.body is not None else {}

    async def get(self, path: str, token: Optional[CancellationToken] = None) -> Any:
        return await self.fetch("GET", path, token=token)

    async def post(self, path: str, body: Any = None, token: Optional[CancellationToken] = None) -> Any:
        return await self.fetch("POST", path, body, token)

    async def patch(self, path: str, body: Any = None, token: Optional[CancellationToken] = None) -> Any:
        return await self.fetch("PATCH", path, body, token)

    async def delete(self, path: str, token: Optional[CancellationToken] = None) -> Any:
        return await self.fetch("DELETE", path, token=token)

    async def healthcheck(self) -> bool:
        """Check the API is reachable and the credential accepted."""
        try:
            await self.get("/auth/me")
            return True
        except Exception as e:
            logger.debug(f"Healthcheck failed: {e}")
            return False
