from __future__ import annotations

import asyncio

import fakeredis
import pytest
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import active, make_client

from lockman.core.errors import Blocked, StoreCommandError
from lockman.core.models import StoreEvent, StoreStatus
from lockman.store.client import StoreClient
from lockman.store.sentinel import (
    CHANNELS,
    SentinelWatcher,
    create_sentinel_client,
    master_of,
    parse_sentinel_message,
)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


@pytest.mark.asyncio
async def test_heartbeat_emits_connect_then_end():
    client = make_client()
    seen = []
    client.on(StoreEvent.CONNECT, lambda: seen.append("connect"))
    client.on(StoreEvent.ERROR, lambda exc: seen.append("error"))
    client.on(StoreEvent.END, lambda: seen.append("end"))

    await client.start()
    await _wait_for(lambda: client.connected)
    assert seen == ["connect"]

    client.fake_server.connected = False
    await _wait_for(lambda: not client.connected)
    assert seen == ["connect", "error", "end"]

    await client.close()


@pytest.mark.asyncio
async def test_unreachable_store_never_connects():
    client = make_client(connected=False)
    seen = []
    client.on(StoreEvent.CONNECT, lambda: seen.append("connect"))
    client.on(StoreEvent.END, lambda: seen.append("end"))
    await client.start()
    await asyncio.sleep(0.2)
    assert seen == []
    assert not client.connected
    await client.close()


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_emit():
    client = make_client()
    seen = []

    def broken() -> None:
        raise RuntimeError("boom")

    client.on(StoreEvent.FAILOVER_START, broken)
    client.on(StoreEvent.FAILOVER_START, lambda: seen.append("failover"))
    client.emit(StoreEvent.FAILOVER_START)
    assert seen == ["failover"]

    client.off(StoreEvent.FAILOVER_START, broken)
    client.emit("failover start")
    assert seen == ["failover", "failover"]


@pytest.mark.asyncio
async def test_set_if_absent_and_compare_and_delete():
    client = make_client()
    assert await client.set_if_absent("LOCKMAN#a", "t1", 1000) is True
    assert await client.set_if_absent("LOCKMAN#a", "t2", 1000) is False
    assert 0 < await client.redis.pttl("LOCKMAN#a") <= 1000

    assert await client.compare_and_delete("LOCKMAN#a", "t2") is False
    assert await client.redis.get("LOCKMAN#a") == b"t1"
    assert await client.compare_and_delete("LOCKMAN#a", "t1") is True
    assert await client.redis.get("LOCKMAN#a") is None
    assert await client.compare_and_delete("LOCKMAN#a", "t1") is False


@pytest.mark.asyncio
async def test_commands_wrap_transport_errors():
    client = make_client(connected=False)
    with pytest.raises(StoreCommandError):
        await client.set_if_absent("LOCKMAN#a", "t1", 1000)
    with pytest.raises(StoreCommandError):
        await client.compare_and_delete("LOCKMAN#a", "t1")
    with pytest.raises(StoreCommandError):
        await client.ping()


def test_master_of_sentinel_payloads():
    assert master_of("+switch-master", "mymaster 10.0.0.1 6379 10.0.0.2 6379") == "mymaster"
    assert master_of("+try-failover", "master mymaster 10.0.0.1 6379") == "mymaster"
    assert master_of("+sdown", "slave 10.0.0.3:6379 10.0.0.3 6379 @ mymaster 10.0.0.1 6379") == "mymaster"
    assert master_of("+sdown", "") is None


def test_parse_sentinel_message_maps_failover_lifecycle():
    assert parse_sentinel_message(b"+try-failover", b"master mymaster 10.0.0.1 6379", "mymaster") is StoreEvent.FAILOVER_START
    assert parse_sentinel_message("+failover-end", "master mymaster 10.0.0.1 6379", "mymaster") is StoreEvent.FAILOVER_END
    assert (
        parse_sentinel_message("+switch-master", "mymaster 10.0.0.1 6379 10.0.0.2 6379", "mymaster")
        is StoreEvent.SWITCH_MASTER
    )
    assert parse_sentinel_message("+sdown", "master mymaster 10.0.0.1 6379", "mymaster") is StoreEvent.SENTINEL_MESSAGE


def test_parse_sentinel_message_ignores_other_masters():
    assert parse_sentinel_message("+try-failover", "master other 10.0.0.9 6379", "mymaster") is None
    assert parse_sentinel_message("+switch-master", "other 10.0.0.9 6379 10.0.0.8 6379", "mymaster") is None


@pytest.mark.asyncio
async def test_heartbeat_survives_unexpected_ping_failure():
    client = make_client()
    real_ping = client.redis.ping
    calls = []

    async def flaky_ping():
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("decoder bug")
        return await real_ping()

    client.redis.ping = flaky_ping
    seen = []
    client.on(StoreEvent.CONNECT, lambda: seen.append("connect"))
    client.on(StoreEvent.ERROR, lambda exc: seen.append(type(exc).__name__))
    client.on(StoreEvent.END, lambda: seen.append("end"))

    await client.start()
    await _wait_for(lambda: len(calls) >= 3 and client.connected)
    assert seen == ["connect", "RuntimeError", "end", "connect"]
    await client.close()


@pytest.mark.asyncio
async def test_failed_command_reports_the_drop():
    client = make_client(heartbeat_interval=60)
    seen = []
    client.on(StoreEvent.CONNECT, lambda: seen.append("connect"))
    client.on(StoreEvent.ERROR, lambda exc: seen.append("error"))
    client.on(StoreEvent.END, lambda: seen.append("end"))
    await client.start()
    await _wait_for(lambda: client.connected)

    client.fake_server.connected = False
    with pytest.raises(StoreCommandError):
        await client.set_if_absent("LOCKMAN#a", "t1", 1000)
    assert not client.connected
    assert seen[:3] == ["connect", "error", "end"]

    client.fake_server.connected = True
    assert await client.set_if_absent("LOCKMAN#a", "t1", 1000) is True
    assert client.connected
    assert seen[-1] == "connect"
    await client.close()


class FakePubSub:
    def __init__(self, messages, *, gate=None, hang=False):
        self.messages = list(messages)
        self.gate = gate
        self.hang = hang
        self.channels = ()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels = channels

    async def listen(self):
        yield {"type": "subscribe", "channel": b"+try-failover", "data": 1}
        if self.gate is not None:
            await self.gate.wait()
        for message in self.messages:
            yield message
        if self.hang:
            await asyncio.Event().wait()
        raise RedisConnectionError("sentinel went away")

    async def aclose(self):
        self.closed = True


class FakeSentinelNode:
    def __init__(self, *pubsubs):
        self.pubsubs = list(pubsubs)
        self.closed = False

    def pubsub(self):
        return self.pubsubs.pop(0)

    async def aclose(self):
        self.closed = True


class FakeSentinel:
    def __init__(self, *nodes):
        self.sentinels = list(nodes)


def _message(channel: str, data: str) -> dict:
    return {"type": "message", "channel": channel.encode(), "data": data.encode()}


@pytest.mark.asyncio
async def test_sentinel_watcher_emits_failover_and_disconnects():
    first = FakePubSub(
        [
            _message("+try-failover", "master other 10.0.0.9 6379"),
            _message("+try-failover", "master mymaster 10.0.0.1 6379"),
        ]
    )
    second = FakePubSub([], hang=True)
    node = FakeSentinelNode(first, second)
    watcher = SentinelWatcher(FakeSentinel(node), "mymaster", reconnect_interval=0.01)

    events = []
    task = asyncio.create_task(watcher.run(lambda event, *args: events.append((event, args))))
    await _wait_for(lambda: len(events) >= 7)

    assert events == [
        (StoreEvent.SENTINEL_CONNECT, ()),
        (StoreEvent.SENTINEL_CONNECTED, ()),
        (StoreEvent.SENTINEL_MESSAGE, ("+try-failover master mymaster 10.0.0.1 6379",)),
        (StoreEvent.FAILOVER_START, ()),
        (StoreEvent.SENTINEL_DISCONNECTED, ()),
        (StoreEvent.SENTINEL_CONNECT, ()),
        (StoreEvent.SENTINEL_CONNECTED, ()),
    ]
    assert first.channels == CHANNELS
    assert first.closed

    await watcher.close()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    assert node.closed
    assert second.closed


@pytest.mark.asyncio
async def test_sentinel_failover_moves_shard_to_failover(mutex_factory):
    gate = asyncio.Event()
    pubsub = FakePubSub([_message("+try-failover", "master mymaster 10.0.0.1 6379")], gate=gate, hang=True)
    watcher = SentinelWatcher(FakeSentinel(FakeSentinelNode(pubsub)), "mymaster")
    server = fakeredis.FakeServer()
    client = StoreClient(fakeredis.FakeAsyncRedis(server=server), heartbeat_interval=0.05, events=watcher)

    mutex = await active(await mutex_factory(clients=[client], expiry=1000))
    gate.set()
    await _wait_for(lambda: mutex.status_of(0) is StoreStatus.FAILOVER)
    with pytest.raises(Blocked) as info:
        await mutex.lock("a")
    assert info.value.blocking_time == 1000


def test_create_sentinel_client_wires_a_watcher():
    client = create_sentinel_client(
        [("localhost", 26379), ("localhost", 26380)],
        "mymaster",
        {"db": 1},
        heartbeat_interval=0.5,
    )
    assert isinstance(client.redis, Redis)
    assert client.owns_connection
    assert client.heartbeat_interval == 0.5
    assert isinstance(client.events, SentinelWatcher)
    assert client.events.master_name == "mymaster"
    assert not client.started
