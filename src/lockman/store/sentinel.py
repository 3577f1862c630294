"""Store handles discovered through Redis Sentinel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Sequence

from redis.asyncio.sentinel import Sentinel
from redis.exceptions import RedisError

from lockman.core.models import StoreEvent
from lockman.store.client import Emit, StoreClient
from lockman.utils.logging import get_logger


# Sentinel pub/sub channels relevant to a watched master.
CHANNELS = (
    "+try-failover",
    "+failover-end",
    "+failover-end-for-timeout",
    "+switch-master",
    "+sdown",
    "-sdown",
    "+odown",
    "-odown",
)

_CHANNEL_EVENTS = {
    "+try-failover": StoreEvent.FAILOVER_START,
    "+failover-end": StoreEvent.FAILOVER_END,
    "+failover-end-for-timeout": StoreEvent.FAILOVER_END,
    "+switch-master": StoreEvent.SWITCH_MASTER,
}


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return str(value)


def master_of(channel: str, data: str) -> Optional[str]:
    """Master name a sentinel message refers to.

    ``+switch-master`` payloads start with the master name; instance events
    use ``<type> <name> <ip> <port> [@ <master> <ip> <port>]``.
    """
    parts = data.split()
    if not parts:
        return None
    if channel == "+switch-master":
        return parts[0]
    if "@" in parts:
        at = parts.index("@")
        return parts[at + 1] if len(parts) > at + 1 else None
    if len(parts) >= 2 and parts[0] == "master":
        return parts[1]
    return None


def parse_sentinel_message(channel: Any, data: Any, master_name: str) -> Optional[StoreEvent]:
    """Translate a sentinel pub/sub message into a store event.

    Messages about other masters yield ``None``; recognised failover
    messages map to their event; anything else about the master is a
    plain ``sentinel message``.
    """
    channel_text = _text(channel)
    data_text = _text(data)
    if master_of(channel_text, data_text) != master_name:
        return None
    return _CHANNEL_EVENTS.get(channel_text, StoreEvent.SENTINEL_MESSAGE)


class SentinelWatcher:
    """Follows a master's failover lifecycle through sentinel pub/sub.

    Sentinels are tried round-robin; losing one emits ``sentinel
    disconnected`` and the watcher moves on to the next after
    ``reconnect_interval`` seconds.
    """

    def __init__(
        self,
        sentinel: Sentinel,
        master_name: str,
        *,
        reconnect_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._sentinel = sentinel
        self.master_name = master_name
        self.reconnect_interval = reconnect_interval
        self._closed = False
        self.logger = logger or get_logger("SentinelWatcher")

    async def run(self, emit: Emit) -> None:
        nodes = list(self._sentinel.sentinels)
        if not nodes:
            self.logger.warning("No sentinels configured for %s", self.master_name)
            return
        index = 0
        while not self._closed:
            node = nodes[index % len(nodes)]
            index += 1
            emit(StoreEvent.SENTINEL_CONNECT)
            pubsub = node.pubsub()
            try:
                await pubsub.subscribe(*CHANNELS)
                emit(StoreEvent.SENTINEL_CONNECTED)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    self._dispatch(message["channel"], message["data"], emit)
            except RedisError as exc:
                self.logger.debug("Sentinel connection for %s lost: %s", self.master_name, exc)
            finally:
                await pubsub.aclose()
            if self._closed:
                break
            emit(StoreEvent.SENTINEL_DISCONNECTED)
            await asyncio.sleep(self.reconnect_interval)

    def _dispatch(self, channel: Any, data: Any, emit: Emit) -> None:
        event = parse_sentinel_message(channel, data, self.master_name)
        if event is None:
            return
        message = f"{_text(channel)} {_text(data)}"
        if event is StoreEvent.SENTINEL_MESSAGE:
            emit(event, message)
            return
        emit(StoreEvent.SENTINEL_MESSAGE, message)
        emit(event)

    async def close(self) -> None:
        self._closed = True
        for node in self._sentinel.sentinels:
            await node.aclose()


def create_sentinel_client(
    sentinels: Iterable[Sequence[Any]],
    master_name: str,
    master_options: Optional[Dict[str, Any]] = None,
    *,
    sentinel_options: Optional[Dict[str, Any]] = None,
    heartbeat_interval: float = 1.0,
) -> StoreClient:
    """Build a StoreClient for ``master_name`` discovered via ``sentinels``."""
    addresses = [(str(host), int(port)) for host, port in sentinels]
    sentinel = Sentinel(addresses, sentinel_kwargs=dict(sentinel_options or {}))
    master = sentinel.master_for(master_name, **dict(master_options or {}))
    watcher = SentinelWatcher(sentinel, master_name)
    return StoreClient(
        master,
        name=master_name,
        heartbeat_interval=heartbeat_interval,
        events=watcher,
        owns_connection=True,
    )
