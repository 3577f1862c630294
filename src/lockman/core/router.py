"""Stable mapping of store keys onto shards."""

from __future__ import annotations

import hashlib


MAX_STORES = 256


def route(store_key: str, shard_count: int) -> int:
    """Shard index for ``store_key``: low byte of its MD5 digest modulo the shard count."""
    if shard_count <= 0:
        return 0
    digest = hashlib.md5(store_key.encode("utf-8")).digest()
    return digest[-1] % shard_count
