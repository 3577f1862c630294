"""Redis store handle that reports its connectivity as events."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from lockman.core.errors import StoreCommandError
from lockman.core.models import StoreEvent
from lockman.utils.logging import get_logger


Listener = Callable[..., None]
Emit = Callable[..., None]

# release only if token matches
RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class EventSource(Protocol):
    """Background producer of extra events, e.g. a sentinel watcher."""

    async def run(self, emit: Emit) -> None: ...

    async def close(self) -> None: ...


class StoreClient:
    """Wraps an asyncio Redis client for one shard.

    A heartbeat task pings the server and emits ``connect`` when it answers
    and ``error``/``end`` when a previously healthy connection stops
    answering. Commands that fail on a dropped connection emit the same
    ``error``/``end`` pair, and a pooled connection that silently reconnects
    emits ``end`` then ``connect``. Listeners are plain callables invoked on
    the event loop; a failing listener is logged and never breaks the emitter.
    """

    def __init__(
        self,
        redis: Redis,
        *,
        name: Optional[str] = None,
        heartbeat_interval: float = 1.0,
        events: Optional[EventSource] = None,
        owns_connection: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._redis = redis
        self.name = name or "redis"
        self.heartbeat_interval = heartbeat_interval
        self.owns_connection = owns_connection
        self._events = events
        self._listeners: Dict[StoreEvent, List[Listener]] = defaultdict(list)
        self._tasks: List[asyncio.Task[None]] = []
        self._connected = False
        self._closed = False
        self._seen_connections: "weakref.WeakSet[Any]" = weakref.WeakSet()
        self.logger = logger or get_logger("StoreClient")
        self._watch_pool()

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "StoreClient":
        return cls(Redis.from_url(url), name=url, owns_connection=True, **kwargs)

    @property
    def redis(self) -> Redis:
        return self._redis

    @property
    def events(self) -> Optional[EventSource]:
        return self._events

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def on(self, event: Union[StoreEvent, str], listener: Listener) -> None:
        self._listeners[StoreEvent(event)].append(listener)

    def off(self, event: Union[StoreEvent, str], listener: Listener) -> None:
        listeners = self._listeners.get(StoreEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: Union[StoreEvent, str], *args: Any) -> None:
        for listener in list(self._listeners.get(StoreEvent(event), [])):
            try:
                listener(*args)
            except Exception:
                self.logger.exception("Listener for %s on %s failed", StoreEvent(event).value, self.name)

    async def start(self) -> None:
        """Start the heartbeat (and the extra event source, if any)."""
        if self._tasks or self._closed:
            return
        self._tasks.append(asyncio.create_task(self._heartbeat(), name=f"heartbeat-{self.name}"))
        if self._events is not None:
            self._tasks.append(asyncio.create_task(self._events.run(self.emit), name=f"events-{self.name}"))

    async def close(self) -> None:
        self._closed = True
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._events is not None:
            await self._events.close()
        if self._connected:
            self._connected = False
            self.emit(StoreEvent.END)
        if self.owns_connection:
            await self._redis.aclose()

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            raise StoreCommandError(f"PING failed on {self.name}: {exc}") from exc

    async def set_if_absent(self, key: str, value: str, expiry_ms: int) -> bool:
        """``SET key value PX expiry_ms NX``; True when the key was set."""
        return bool(await self._command("SET", self._redis.set(key, value, px=expiry_ms, nx=True)))

    async def compare_and_delete(self, key: str, value: str) -> bool:
        """Delete ``key`` only while it still holds ``value``; True when deleted."""
        result = await self._command("EVAL", self._redis.eval(RELEASE_LUA, 1, key, value))
        return int(result) == 1

    async def _command(self, name: str, pending: Awaitable[Any]) -> Any:
        try:
            result = await pending
        except (RedisConnectionError, RedisTimeoutError) as exc:
            self._mark_lost(exc)
            raise StoreCommandError(f"{name} failed on {self.name}: {exc}") from exc
        except RedisError as exc:
            raise StoreCommandError(f"{name} failed on {self.name}: {exc}") from exc
        if self.started:
            self._mark_connected()
        return result

    def on_connection_established(self, connection: Any) -> None:
        """Connect callback for every pooled connection.

        A connection that connects a second time has been dropped and
        re-established by redis-py, possibly without any command failing.
        That counts as ``end`` followed by ``connect``.
        """
        if connection in self._seen_connections:
            self.logger.warning("%s reconnected", self.name)
            self._mark_lost(None)
        else:
            self._seen_connections.add(connection)
        self._mark_connected()

    def _watch_pool(self) -> None:
        # only connections made after this point are watched
        pool = getattr(self._redis, "connection_pool", None)
        if pool is None:
            return
        make_connection = pool.make_connection

        def make_watched_connection(*args: Any, **kwargs: Any) -> Any:
            connection = make_connection(*args, **kwargs)
            connection.register_connect_callback(self.on_connection_established)
            return connection

        pool.make_connection = make_watched_connection

    def _mark_connected(self) -> None:
        if not self._connected and not self._closed:
            self._connected = True
            self.emit(StoreEvent.CONNECT)

    def _mark_lost(self, exc: Optional[BaseException]) -> None:
        if not self._connected:
            return
        self._connected = False
        if exc is not None:
            self.emit(StoreEvent.ERROR, exc)
        self.emit(StoreEvent.END)

    async def _heartbeat(self) -> None:
        while not self._closed:
            try:
                await self._redis.ping()
            except RedisError as exc:
                if self._connected:
                    self._mark_lost(exc)
                else:
                    self.logger.debug("%s not reachable yet: %s", self.name, exc)
            except Exception as exc:
                self.logger.exception("Heartbeat of %s failed", self.name)
                self._mark_lost(exc)
            else:
                self._mark_connected()
            await asyncio.sleep(self.heartbeat_interval)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, connected={self._connected})"
