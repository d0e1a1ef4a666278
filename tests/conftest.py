"""
Shared fixtures: fake clocks, a scripted transport and an isolated context.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pytest

from config.settings import Settings
from dashsync.api_client import TransportResponse
from dashsync.context import AppContext

BASE_URL = "https://api.test"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Call:
    method: str
    path: str
    body: Any
    headers: Dict[str, str] = field(default_factory=dict)


class FakeTransport:
    """
    Scripted transport.

    Responses are queued per (method, path); the last queued response keeps
    being returned once the queue is down to one. A gate holds every call on
    a route until the test releases it.
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.calls: List[Call] = []
        self._routes: Dict[Tuple[str, str], List[Any]] = {}
        self._gates: Dict[Tuple[str, str], asyncio.Event] = {}

    def reply(self, method: str, path: str, body: Any = None, status: int = 200, reason: str = "OK"):
        self._routes.setdefault((method, path), []).append(TransportResponse(status, reason, body))
        return self

    def fail(self, method: str, path: str, error: BaseException):
        self._routes.setdefault((method, path), []).append(error)
        return self

    def gate(self, method: str, path: str) -> asyncio.Event:
        event = asyncio.Event()
        self._gates[(method, path)] = event
        return event

    def count(self, method: str, path: str) -> int:
        return sum(1 for call in self.calls if call.method == method and call.path == path)

    def calls_to(self, method: str, path: str) -> List[Call]:
        return [call for call in self.calls if call.method == method and call.path == path]

    async def __call__(self, method: str, url: str, body: Any, headers: Dict[str, str]) -> TransportResponse:
        path = url[len(self.base_url):]
        self.calls.append(Call(method, path, body, dict(headers)))

        gate = self._gates.get((method, path))
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)

        queue = self._routes.get((method, path))
        if not queue:
            return TransportResponse(404, "Not Found", {"message": f"No route for {method} {path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run up to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Payload builders
# =============================================================================

def redirect_json(redirect_id: int, sync_status: str = "synced", enabled: bool = True, **extra) -> Dict[str, Any]:
    data = {
        "id": redirect_id,
        "template_id": "T1",
        "params": {"target_url": "https://target.example"},
        "enabled": enabled,
        "status_code": 301,
        "sync_status": sync_status,
        "last_sync_at": "2026-10-01T12:00:00Z" if sync_status == "synced" else None,
    }
    data.update(extra)
    return data


def domain_json(
    domain_id: int,
    name: str,
    zone_id: Optional[int] = 10,
    redirect: Optional[Dict[str, Any]] = None,
    role: str = "donor",
    site_status: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "domain_id": domain_id,
        "domain_name": name,
        "domain_role": role if redirect else "reserve",
        "zone_id": zone_id,
        "site_status": site_status,
        "redirect": redirect,
    }


def site_json(site_id: int, domains: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "ok": True,
        "site_id": site_id,
        "domains": domains,
        "zone_limits": [
            {"zone_id": zone_id, "used": 1, "max": 10}
            for zone_id in sorted({d["zone_id"] for d in domains if d["zone_id"]})
        ],
        "total_domains": len(domains),
        "total_redirects": sum(1 for d in domains if d["redirect"]),
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def settings():
    return Settings(
        api_base_url=BASE_URL,
        default_cache_ttl_seconds=30.0,
        token_max_age_seconds=600.0,
        token_mirror_path=None,
    )


@pytest.fixture
def ctx(settings, transport, clock, wall_clock):
    """Application context wired to the fake transport and clocks."""
    context = AppContext.create(settings=settings, transport=transport, clock=clock, wall_clock=wall_clock)
    context.token_store.set("token-1")
    return context
