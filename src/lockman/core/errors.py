"""Exception hierarchy raised by the mutex."""

from __future__ import annotations

from typing import Optional


class MutexError(Exception):
    """Base class for every lockman failure."""


class ConfigError(MutexError, ValueError):
    """Setup options are missing or invalid."""


class InvalidArgument(MutexError, ValueError):
    """A lock request is malformed."""


class StoreUninitialized(MutexError):
    """The shard owning a key has no live store handle yet."""

    def __init__(self, message: str, *, shard: Optional[int] = None) -> None:
        super().__init__(message)
        self.shard = shard


class Blocked(MutexError):
    """The owning shard is inside its post-anomaly quarantine window."""

    def __init__(self, message: str, *, shard: int, blocking_time: int, store_key: str) -> None:
        super().__init__(message)
        self.shard = shard
        self.blocking_time = blocking_time
        self.store_key = store_key


class RetryExhausted(MutexError):
    """The key stayed held for longer than the retry budget allowed."""

    def __init__(
        self,
        message: str,
        *,
        shard: int,
        store_key: str,
        retry: Optional[int],
        interval: int,
    ) -> None:
        super().__init__(message)
        self.shard = shard
        self.store_key = store_key
        self.retry = retry
        self.interval = interval


class StoreCommandError(MutexError):
    """A command sent to the store failed at the transport or protocol level."""

    def __init__(self, message: str, *, shard: Optional[int] = None) -> None:
        super().__init__(message)
        self.shard = shard
