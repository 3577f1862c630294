"""Data models shared across the lockman runtime."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


SubKeyPart = Union[StrictStr, StrictInt]
SubKey = Union[SubKeyPart, List[SubKeyPart]]


class StoreStatus(str, Enum):
    """Connection state of a single shard."""

    UNINITIALIZED = "uninit"
    ACTIVE = "active"
    DOWN = "down"
    FAILOVER = "failover"
    UNKNOWN = "unknown"


class StoreEvent(str, Enum):
    """Connectivity events emitted by a store client."""

    CONNECT = "connect"
    END = "end"
    ERROR = "error"
    SENTINEL_CONNECT = "sentinel connect"
    SENTINEL_CONNECTED = "sentinel connected"
    SENTINEL_DISCONNECTED = "sentinel disconnected"
    SENTINEL_MESSAGE = "sentinel message"
    FAILOVER_START = "failover start"
    FAILOVER_END = "failover end"
    SWITCH_MASTER = "switch master"


class ReleaseStatus(str, Enum):
    """Outcome of a compare-and-delete release."""

    RELEASED = "released"
    ALREADY_RELEASED = "already_released"

    @property
    def already_released(self) -> bool:
        return self is ReleaseStatus.ALREADY_RELEASED


class LockOptions(BaseModel):
    """Per-request overrides for the acquisition loop."""

    model_config = ConfigDict(frozen=True)

    retry: Optional[int] = Field(default=None, ge=0)
    interval: Optional[int] = Field(default=None, ge=0)


class LockRequest(BaseModel):
    """A single lock call: logical key, optional sub-key and overrides."""

    model_config = ConfigDict(frozen=True)

    key: StrictStr = Field(min_length=1)
    sub_key: Optional[SubKey] = None
    options: LockOptions = Field(default_factory=LockOptions)


@dataclass
class ShardHealth:
    status: StoreStatus = StoreStatus.UNINITIALIZED
    # monotonic seconds of the latest down/failover event
    last_anomaly: Optional[float] = None
