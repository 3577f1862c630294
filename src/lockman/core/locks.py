"""Abstract interfaces for distributed locks."""

from __future__ import annotations

import abc
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Protocol

from lockman.core.codec import SubKeyInput
from lockman.core.models import ReleaseStatus


class ReleaseHandle(Protocol):
    async def unlock(self) -> ReleaseStatus: ...
    async def __aenter__(self) -> "ReleaseHandle": ...
    async def __aexit__(self, exc_type, exc, tb) -> None: ...


class LockManager(abc.ABC):
    @abc.abstractmethod
    async def lock(
        self,
        key: str,
        sub_key: SubKeyInput = None,
        *,
        retry: Optional[int] = None,
        interval: Optional[int] = None,
    ) -> ReleaseHandle:  # pragma: no cover - interface
        """Acquire the lock for ``key``/``sub_key`` and return its release handle."""
        raise NotImplementedError

    @asynccontextmanager
    async def locked(
        self,
        key: str,
        sub_key: SubKeyInput = None,
        *,
        retry: Optional[int] = None,
        interval: Optional[int] = None,
    ) -> AsyncIterator[ReleaseHandle]:
        """Hold the lock for the duration of the ``async with`` block."""
        handle = await self.lock(key, sub_key, retry=retry, interval=interval)
        async with handle:
            yield handle
