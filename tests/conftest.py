from __future__ import annotations

from typing import Any, List

import fakeredis
import pytest
import pytest_asyncio

from lockman.core.mutex import Mutex
from lockman.store.client import StoreClient


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_client(*, connected: bool = True, heartbeat_interval: float = 0.05) -> StoreClient:
    server = fakeredis.FakeServer()
    server.connected = connected
    client = StoreClient(
        fakeredis.FakeAsyncRedis(server=server),
        heartbeat_interval=heartbeat_interval,
    )
    client.fake_server = server  # lets tests cut the connection
    return client


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def mutex_factory(clock: FakeClock):
    created: List[Mutex] = []

    async def factory(shards: int = 1, *, clients: List[StoreClient] | None = None, **options: Any) -> Mutex:
        mutex = Mutex(clock=clock)
        created.append(mutex)
        stores = clients if clients is not None else [make_client() for _ in range(shards)]
        settings = {"expiry": 200, "interval": 10, **options, "redis": {"clients": stores}}
        await mutex.setup(settings)
        return mutex

    yield factory

    for mutex in created:
        await mutex.close()


async def active(mutex: Mutex) -> Mutex:
    await mutex.wait_active(timeout=2.0)
    return mutex


def key_on_shard(mutex: Mutex, shard: int, *, prefix: str = "k", exclude: str | None = None) -> str:
    for index in range(1000):
        candidate = f"{prefix}{index}"
        if candidate != exclude and mutex.shard_of(candidate) == shard:
            return candidate
    raise AssertionError(f"no key routed to shard {shard}")
