"""Store handles backing the mutex shards."""

from .client import StoreClient
from .sentinel import SentinelWatcher, create_sentinel_client

__all__ = ["StoreClient", "SentinelWatcher", "create_sentinel_client"]
