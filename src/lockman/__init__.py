"""Sharded, lease-based distributed locks on Redis."""

from .core import (
    Blocked,
    ConfigError,
    InvalidArgument,
    LockHandle,
    LockRequest,
    Mutex,
    MutexError,
    MutexSettings,
    ReleaseStatus,
    RetryExhausted,
    StoreCommandError,
    StoreStatus,
    StoreUninitialized,
)
from .store import StoreClient

__all__ = [
    "__version__",
    "Blocked",
    "ConfigError",
    "InvalidArgument",
    "LockHandle",
    "LockRequest",
    "Mutex",
    "MutexError",
    "MutexSettings",
    "ReleaseStatus",
    "RetryExhausted",
    "StoreClient",
    "StoreCommandError",
    "StoreStatus",
    "StoreUninitialized",
]

__version__ = "0.1.0"
