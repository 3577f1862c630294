"""CLI entrypoint that runs contending workers against one lock key."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Optional

from lockman import Blocked, Mutex, MutexError, MutexSettings, RetryExhausted
from lockman.utils.env import get_bool_env, get_int_env, get_list_env
from lockman.utils.logging import get_logger, set_level


logger = get_logger("LockDemo")


def _load_settings(path: Optional[Path]) -> MutexSettings:
    urls = get_list_env("LOCKMAN_REDIS_URLS")
    if urls:
        logger.info("Using %d store(s) from LOCKMAN_REDIS_URLS", len(urls))
        return MutexSettings.parse(
            {
                "retry": get_int_env("LOCKMAN_RETRY"),
                "redis": {"urls": urls, "setupTimeout": get_int_env("LOCKMAN_SETUP_TIMEOUT", default=10000)},
            }
        )
    if path is None or not path.exists():
        raise SystemExit("No settings: pass --config or set LOCKMAN_REDIS_URLS")
    return MutexSettings.from_file(path)


async def _worker(mutex: Mutex, worker_id: int, key: str, sub_key: Optional[str], hold: float) -> str:
    try:
        async with mutex.locked(key, sub_key) as handle:
            logger.info("worker %d holds %s on shard %d", worker_id, handle.store_key, handle.shard)
            await asyncio.sleep(hold)
        return "ok"
    except Blocked as exc:
        logger.warning("worker %d blocked for %d ms", worker_id, exc.blocking_time)
        return "blocked"
    except RetryExhausted:
        logger.warning("worker %d gave up after %s retries", worker_id, mutex.settings.retry if mutex.settings else None)
        return "exhausted"
    except MutexError as exc:
        logger.error("worker %d failed: %s", worker_id, exc)
        return "error"


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run contending lock workers against a sharded Redis mutex.")
    parser.add_argument("--config", type=Path, default=Path("config/mutex.example.yml"), help="Path to mutex YAML")
    parser.add_argument("--key", default="demo", help="Logical lock key")
    parser.add_argument("--sub-key", default=None, help="Optional sub key")
    parser.add_argument("--workers", type=int, default=3, help="Number of contending workers")
    parser.add_argument("--hold", type=float, default=0.5, help="Seconds each worker holds the lock")
    args = parser.parse_args()

    settings = _load_settings(args.config)
    mutex = Mutex()
    if get_bool_env("LOCKMAN_DEBUG"):
        set_level(logging.DEBUG)
    await mutex.setup(settings)
    try:
        results = await asyncio.gather(
            *(_worker(mutex, i, args.key, args.sub_key, args.hold) for i in range(args.workers))
        )
        logger.info("results: %s", ", ".join(results))
    finally:
        await mutex.close()


if __name__ == "__main__":
    asyncio.run(main())
