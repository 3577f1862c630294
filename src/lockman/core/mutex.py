"""Sharded Redis mutex: acquisition, release and post-anomaly blocking."""

from __future__ import annotations

import asyncio
import functools
import logging
import math
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError
from redis.asyncio import Redis

from lockman.core.codec import SubKeyInput, build_key, build_token
from lockman.core.errors import (
    Blocked,
    ConfigError,
    InvalidArgument,
    MutexError,
    RetryExhausted,
    StoreCommandError,
    StoreUninitialized,
)
from lockman.core.health import Clock, HealthTracker
from lockman.core.locks import LockManager
from lockman.core.models import (
    LockOptions,
    LockRequest,
    ReleaseStatus,
    ShardHealth,
    StoreEvent,
    StoreStatus,
)
from lockman.core.router import route
from lockman.core.settings import MutexSettings, StoreSettings
from lockman.store.client import StoreClient
from lockman.store.sentinel import create_sentinel_client
from lockman.utils.logging import get_logger


WAIT_ACTIVE_POLL = 0.1  # sec

_EVENT_LOG_LEVELS = {
    StoreEvent.CONNECT: ("Redis", logging.DEBUG),
    StoreEvent.END: ("Redis", logging.ERROR),
    StoreEvent.ERROR: ("Redis", logging.ERROR),
    StoreEvent.SENTINEL_CONNECT: ("RedisSn", logging.DEBUG),
    StoreEvent.SENTINEL_CONNECTED: ("RedisSn", logging.DEBUG),
    StoreEvent.SENTINEL_DISCONNECTED: ("RedisSn", logging.ERROR),
    StoreEvent.SENTINEL_MESSAGE: ("RedisSn", logging.WARNING),
    StoreEvent.FAILOVER_START: ("RedisSn", logging.ERROR),
    StoreEvent.FAILOVER_END: ("RedisSn", logging.ERROR),
    StoreEvent.SWITCH_MASTER: ("RedisSn", logging.ERROR),
}


class LockHandle:
    """Release capability for one acquired lock."""

    def __init__(self, mutex: "Mutex", *, shard: int, store_key: str, token: str, expiry: int) -> None:
        self._mutex = mutex
        self.shard = shard
        self.store_key = store_key
        self.token = token
        self.expiry = expiry

    async def unlock(self) -> ReleaseStatus:
        return await self._mutex.release(self.shard, self.store_key, self.token)

    async def __aenter__(self) -> "LockHandle":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.unlock()
        except MutexError as unlock_exc:
            if exc_type is None:
                raise
            # keep the exception raised inside the block
            self._mutex.logger.error("unlock of %s failed : %s", self.store_key, unlock_exc)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(shard={self.shard}, store_key={self.store_key!r})"


class Mutex(LockManager):
    """Distributed lock over a set of independent Redis shards.

    Each store key lives on exactly one shard. After a shard drops or fails
    over, new acquisitions of its keys are refused for one lease period.
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None, clock: Clock = time.monotonic) -> None:
        self.logger = logger or get_logger("Mutex")
        self.settings: Optional[MutexSettings] = None
        self._stores: Dict[int, StoreClient] = {}
        self._listeners: Dict[int, List[Tuple[StoreEvent, Callable[..., None]]]] = {}
        self._health = HealthTracker(clock=clock, logger=logger)

    @property
    def health(self) -> HealthTracker:
        return self._health

    @property
    def stores(self) -> List[StoreClient]:
        return [self._stores[index] for index in sorted(self._stores)]

    async def setup(self, settings: Union[MutexSettings, Mapping[str, Any], None]) -> None:
        """Validate settings, attach the store set and, for built stores, wait until all are active."""
        parsed = MutexSettings.parse(settings)
        if self._stores:
            raise ConfigError("Mutex is already set up; close() it before calling setup() again")
        self.settings = parsed
        try:
            await self._setup_store(parsed.redis)
        except BaseException:
            await self.close()
            raise

    async def _setup_store(self, redis: StoreSettings) -> None:
        heartbeat = redis.heartbeat_interval / 1000
        if redis.kind == "clients":
            clients = [self._wrap_client(index, client, heartbeat) for index, client in enumerate(redis.clients)]
        elif redis.kind == "sclients":
            clients = [
                create_sentinel_client(
                    conf.sentinels,
                    conf.master_name,
                    redis.master_option,  # sclients share one master option
                    sentinel_options=redis.sentinel_option,
                    heartbeat_interval=heartbeat,
                )
                for conf in redis.sclients
            ]
        else:
            clients = [StoreClient.from_url(url, heartbeat_interval=heartbeat) for url in redis.urls]

        for index, client in enumerate(clients):
            await self._add_store(index, client)

        if redis.builds_clients:
            timeout = redis.setup_timeout / 1000 if redis.setup_timeout else None
            await self.wait_active(timeout=timeout)

    def _wrap_client(self, index: int, client: Any, heartbeat: float) -> StoreClient:
        if isinstance(client, StoreClient):
            return client
        if isinstance(client, Redis):
            return StoreClient(client, name=f"Redis_{index}", heartbeat_interval=heartbeat)
        raise ConfigError(f"redis.clients[{index}] is not a redis client: {type(client).__name__}")

    async def _add_store(self, index: int, client: StoreClient) -> None:
        if index in self._stores:
            return
        self._stores[index] = client
        listeners = self._listeners.setdefault(index, [])
        for event in StoreEvent:
            listener = functools.partial(self._on_store_event, index, event)
            client.on(event, listener)
            listeners.append((event, listener))
        if client.connected:
            self._health.set_status(index, StoreStatus.ACTIVE)
        await client.start()

    def _on_store_event(self, index: int, event: StoreEvent, *args: Any) -> None:
        label, level = _EVENT_LOG_LEVELS[event]
        if args:
            self.logger.log(level, "[ %s_%d ] %s : %s", label, index, event.value, args[0])
        else:
            self.logger.log(level, "[ %s_%d ] %s", label, index, event.value)
        self._health.on_event(index, event)

    async def wait_active(self, *, timeout: Optional[float] = None) -> None:
        """Block until every shard reports ``active``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        while True:
            pending = [index for index in sorted(self._stores) if self.status_of(index) is not StoreStatus.ACTIVE]
            if not pending:
                self.logger.info("[ Redis_ALL ] connected")
                return
            if deadline is not None and loop.time() >= deadline:
                raise StoreUninitialized(
                    f"Stores did not become active within {timeout}s: {pending}", shard=pending[0]
                )
            self.logger.debug("[ Redis_%d ] wait connection", pending[0])
            await asyncio.sleep(WAIT_ACTIVE_POLL)

    def _require_settings(self) -> MutexSettings:
        if self.settings is None:
            raise StoreUninitialized("Mutex is not set up")
        return self.settings

    def status_of(self, shard: int) -> StoreStatus:
        return self._health.status_of(shard)

    def health_of(self, shard: int) -> Optional[ShardHealth]:
        return self._health.health_of(shard)

    def expiry_for(self, key: str) -> int:
        return self._require_settings().expiry_for(key)

    def store_key(self, key: str, sub_key: SubKeyInput = None) -> str:
        return build_key(self._require_settings().key_prefix, key, sub_key)

    def shard_of(self, key: str, sub_key: SubKeyInput = None) -> int:
        return route(self.store_key(key, sub_key), len(self._stores))

    def blocking_time(self, key: str, sub_key: SubKeyInput = None) -> int:
        """Milliseconds left before the shard owning ``key`` accepts new locks."""
        return self._blocking_time(self.shard_of(key, sub_key), key)

    def _blocking_time(self, shard: int, key: str) -> int:
        health = self._health.health_of(shard)
        if health is None or health.last_anomaly is None:
            return 0
        elapsed = (self._health.now() - health.last_anomaly) * 1000
        remaining = self.expiry_for(key) - elapsed
        if remaining <= 0:
            return 0
        return max(1, math.ceil(remaining))

    async def lock(
        self,
        key: str,
        sub_key: SubKeyInput = None,
        *,
        retry: Optional[int] = None,
        interval: Optional[int] = None,
    ) -> LockHandle:
        """Acquire ``key`` (plus optional ``sub_key``) and return its handle.

        ``retry`` and ``interval`` override the configured values for this
        call only. Raises ``Blocked``, ``StoreUninitialized`` and
        ``StoreCommandError`` immediately; ``RetryExhausted`` once the key
        stayed held past the retry budget.
        """
        try:
            request = LockRequest(key=key, sub_key=sub_key, options=LockOptions(retry=retry, interval=interval))
        except ValidationError as exc:
            raise InvalidArgument(f"Unsupported arguments: {exc}") from exc
        return await self.acquire(request)

    async def acquire(self, request: LockRequest) -> LockHandle:
        settings = self._require_settings()
        store_key = build_key(settings.key_prefix, request.key, request.sub_key)
        token = build_token(settings.value_length, settings.value_prefix)
        shard = route(store_key, len(self._stores))
        retry = request.options.retry if request.options.retry is not None else settings.retry
        interval = request.options.interval if request.options.interval is not None else settings.interval
        expiry = settings.expiry_for(request.key)

        retry_count = 0
        while True:
            if retry is not None and retry_count > retry:
                raise RetryExhausted(
                    f"Lock acquisition is retry failure. : storeIndex = {shard} lockKey = {store_key} "
                    f"retry = {retry} interval = {interval}",
                    shard=shard,
                    store_key=store_key,
                    retry=retry,
                    interval=interval,
                )

            client = self._stores.get(shard)
            if client is None or self.status_of(shard) is StoreStatus.UNINITIALIZED:
                raise StoreUninitialized(f"Store is uninitialized. : storeIndex = {shard}", shard=shard)

            blocking_time = self._blocking_time(shard, request.key)
            if blocking_time > 0:
                raise Blocked(
                    f"Lock acquisition is blocked. : storeIndex = {shard} "
                    f"blockingTime = {blocking_time} lockKey = {store_key}",
                    shard=shard,
                    blocking_time=blocking_time,
                    store_key=store_key,
                )

            try:
                acquired = await client.set_if_absent(store_key, token, expiry)
            except StoreCommandError as exc:
                raise StoreCommandError(str(exc), shard=shard) from exc

            if acquired:
                self.logger.debug(
                    "lock key = %s value = %s storeIndex = %d expiry = %d", store_key, token, shard, expiry
                )
                return LockHandle(self, shard=shard, store_key=store_key, token=token, expiry=expiry)

            retry_count += 1
            self.logger.debug(
                "retry key = %s value = %s storeIndex = %d retry = %s interval = %d",
                store_key,
                token,
                shard,
                retry,
                interval,
            )
            await asyncio.sleep(interval / 1000)

    async def release(self, shard: int, store_key: str, token: str) -> ReleaseStatus:
        """Delete ``store_key`` on ``shard`` only if it still holds ``token``.

        A shard that is gone (the mutex was closed) cannot confirm the
        release and raises ``StoreCommandError``.
        """
        client = self._stores.get(shard)
        if client is None:
            raise StoreCommandError(f"Store is closed. : storeIndex = {shard} lockKey = {store_key}", shard=shard)
        try:
            deleted = await client.compare_and_delete(store_key, token)
        except StoreCommandError as exc:
            raise StoreCommandError(str(exc), shard=shard) from exc

        if not deleted:
            self.logger.warning(
                "already unlocked key = %s value = %s storeIndex = %d", store_key, token, shard
            )
            return ReleaseStatus.ALREADY_RELEASED
        self.logger.debug("unlock key = %s value = %s storeIndex = %d", store_key, token, shard)
        return ReleaseStatus.RELEASED

    async def close(self) -> None:
        """Stop heartbeats and watchers, closing the connections the mutex built."""
        stores = dict(self._stores)
        self._stores.clear()
        results = await asyncio.gather(*(client.close() for client in stores.values()), return_exceptions=True)
        for (index, client), result in zip(stores.items(), results):
            for event, listener in self._listeners.pop(index, []):
                client.off(event, listener)
            if isinstance(result, Exception):
                self.logger.error("[ Redis_%d ] close failed : %s", index, result)
        self._health.reset()
        self.settings = None
