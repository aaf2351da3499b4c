import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from core.event_bus import EventBus
from core.models import RemoteConfig
from core.remote_config import ConfigFetchError
from core.store import AppStateStore, MemoryStore
from core.surface import BrowsingSurface, CookieStoreUnavailable, NewWindowRequest, SurfaceFactory


class FakeSurface(BrowsingSurface):
    def __init__(self, request: Optional[NewWindowRequest] = None):
        super().__init__()
        self.request = request
        self.loads: List[str] = []
        self.history: List[str] = []
        self.cookies: List[Dict[str, Any]] = []
        self.cookies_unavailable = False
        self.stopped = 0
        self.closed = False

    @property
    def current_url(self) -> Optional[str]:
        return self.history[-1] if self.history else None

    @property
    def can_go_back(self) -> bool:
        return len(self.history) > 1

    async def load(self, url: str) -> None:
        self.loads.append(url)
        self.history.append(url)

    async def stop_loading(self) -> None:
        self.stopped += 1

    async def go_back(self) -> None:
        if self.can_go_back:
            self.history.pop()

    async def get_cookies(self) -> List[Dict[str, Any]]:
        if self.cookies_unavailable:
            raise CookieStoreUnavailable("jar locked")
        return [dict(c) for c in self.cookies]

    async def set_cookie(self, cookie: Dict[str, Any]) -> None:
        if self.cookies_unavailable:
            raise CookieStoreUnavailable("jar locked")
        self.cookies.append(dict(cookie))

    async def close(self) -> None:
        self.closed = True


class FakeFactory(SurfaceFactory):
    def __init__(self):
        self.created: List[FakeSurface] = []
        self.prepared_cookies: List[Dict[str, Any]] = []
        self.cookies_unavailable = False

    async def create(self, parent=None, request=None) -> BrowsingSurface:
        surface = FakeSurface(request)
        surface.cookies_unavailable = self.cookies_unavailable
        self.created.append(surface)
        return surface


class FakeScheduler:
    """Records delayed jobs; tests fire them explicitly."""

    def __init__(self):
        self.jobs: Dict[str, Callable] = {}
        self.delays: Dict[str, float] = {}

    def schedule_once(self, job_id, delay, func):
        self.jobs[job_id] = func
        self.delays[job_id] = delay

    def cancel(self, job_id):
        self.jobs.pop(job_id, None)
        self.delays.pop(job_id, None)

    def list_pending(self):
        return {job_id: str(delay) for job_id, delay in self.delays.items()}

    async def fire(self, job_id):
        func = self.jobs.pop(job_id)
        self.delays.pop(job_id, None)
        await func()


class FakeResolver:
    """Scripted resolver: each fetch pops the next outcome (RemoteConfig or exception)."""

    def __init__(self, outcomes=None, organic=None):
        self.outcomes = list(outcomes or [])
        self.organic = organic if organic is not None else {}
        self.fetched = []
        self.organic_calls = []

    async def fetch(self, attribution):
        self.fetched.append(attribution)
        outcome = self.outcomes.pop(0) if self.outcomes else ConfigFetchError("no scripted outcome")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_organic_attribution(self, device_id):
        self.organic_calls.append(device_id)
        if isinstance(self.organic, Exception):
            raise self.organic
        return self.organic


def config(url: str, expires: float = 1700000000) -> RemoteConfig:
    return RemoteConfig(url=url, expires_at=expires, fetched_at=1000)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0):
    """Let the controller loop and background fetches run until `predicate` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


async def drain(seconds: float = 0.05):
    """Give queued events a chance to be handled (for asserting that nothing happens)."""
    await asyncio.sleep(seconds)


@pytest.fixture
def memory_store():
    # Permission already granted so launches go straight to resolution
    return MemoryStore({"notifications_allowed": True})


@pytest.fixture
def state(memory_store):
    return AppStateStore(memory_store)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def factory():
    return FakeFactory()
