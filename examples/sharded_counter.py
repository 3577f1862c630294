#!/usr/bin/env python3
"""Simple example of guarding a read-modify-write with the mutex.

Several tasks increment counters kept in Redis. Each counter is protected
by its own lock key, so counters on different shards never wait for each
other.
"""

import asyncio

from lockman import Mutex
from lockman.utils.logging import get_logger

logger = get_logger("ShardedCounterExample")

URLS = ["redis://localhost:6379/0", "redis://localhost:6380/0"]


async def increment(mutex: Mutex, counter: str) -> None:
    async with mutex.locked("counter", counter) as handle:
        redis = mutex.stores[handle.shard].redis
        value = int(await redis.get(f"value:{counter}") or 0)
        await redis.set(f"value:{counter}", value + 1)


async def main():
    """Example: 20 concurrent increments over 4 counters."""

    # Step 1: Build one store per URL and wait until all of them answer
    mutex = Mutex()
    await mutex.setup({"interval": 20, "expiry": 2000, "redis": {"urls": URLS, "setupTimeout": 5000}})

    # Step 2: Contend on the counters
    try:
        counters = [f"c{i % 4}" for i in range(20)]
        await asyncio.gather(*(increment(mutex, counter) for counter in counters))
        for counter in sorted(set(counters)):
            logger.info("%s lives on shard %d", counter, mutex.shard_of("counter", counter))
    finally:
        await mutex.close()


if __name__ == "__main__":
    asyncio.run(main())
