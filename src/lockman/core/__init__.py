"""Core lock primitives: codec, routing, shard health and the mutex itself."""

from .errors import (
    Blocked,
    ConfigError,
    InvalidArgument,
    MutexError,
    RetryExhausted,
    StoreCommandError,
    StoreUninitialized,
)
from .models import LockOptions, LockRequest, ReleaseStatus, ShardHealth, StoreEvent, StoreStatus
from .mutex import LockHandle, Mutex
from .settings import MutexSettings, SentinelStoreSettings, StoreSettings

__all__ = [
    "Blocked",
    "ConfigError",
    "InvalidArgument",
    "MutexError",
    "RetryExhausted",
    "StoreCommandError",
    "StoreUninitialized",
    "LockOptions",
    "LockRequest",
    "ReleaseStatus",
    "ShardHealth",
    "StoreEvent",
    "StoreStatus",
    "LockHandle",
    "Mutex",
    "MutexSettings",
    "SentinelStoreSettings",
    "StoreSettings",
]
