"""Per-shard connection state machines fed by store events."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Union

from lockman.core.models import ShardHealth, StoreEvent, StoreStatus
from lockman.utils.logging import get_logger


Clock = Callable[[], float]

_EVENT_STATUS = {
    StoreEvent.CONNECT: StoreStatus.ACTIVE,
    StoreEvent.END: StoreStatus.DOWN,
    StoreEvent.FAILOVER_START: StoreStatus.FAILOVER,
}

_ANOMALIES = {StoreStatus.DOWN, StoreStatus.FAILOVER}


class HealthTracker:
    """Tracks status and latest anomaly time of every shard.

    Shards without a record are ``uninit``. A ``down`` or ``failover`` status
    pushes the anomaly time forward; it never moves backwards.
    """

    def __init__(self, *, clock: Clock = time.monotonic, logger: Optional[logging.Logger] = None) -> None:
        self._clock = clock
        self._shards: Dict[int, ShardHealth] = {}
        self.logger = logger or get_logger("HealthTracker")

    def now(self) -> float:
        return self._clock()

    def status_of(self, shard: int) -> StoreStatus:
        health = self._shards.get(shard)
        if health is None:
            return StoreStatus.UNINITIALIZED
        return health.status

    def health_of(self, shard: int) -> Optional[ShardHealth]:
        health = self._shards.get(shard)
        if health is None:
            return None
        return ShardHealth(status=health.status, last_anomaly=health.last_anomaly)

    def snapshot(self) -> Dict[int, ShardHealth]:
        return {shard: self.health_of(shard) for shard in self._shards}

    def set_status(self, shard: int, status: Union[StoreStatus, str], *, at: Optional[float] = None) -> StoreStatus:
        """Record ``status`` for ``shard``; unrecognised codes become ``unknown``."""
        try:
            code = StoreStatus(status)
        except ValueError:
            code = StoreStatus.UNKNOWN

        now = self._clock() if at is None else at
        health = self._shards.get(shard)
        if health is None:
            health = ShardHealth(status=code)
        previous = health.status
        health.status = code

        if code in _ANOMALIES:
            if health.last_anomaly is None:
                health.last_anomaly = now
            else:
                health.last_anomaly = max(health.last_anomaly, now)

        self._shards[shard] = health
        self._log_transition(shard, previous, code, status)
        return code

    def on_event(self, shard: int, event: Union[StoreEvent, str]) -> Optional[StoreStatus]:
        """Apply a connectivity event; events that carry no status are ignored."""
        try:
            status = _EVENT_STATUS.get(StoreEvent(event))
        except ValueError:
            status = None
        if status is None:
            return None
        return self.set_status(shard, status)

    def reset(self, shard: Optional[int] = None) -> None:
        if shard is None:
            self._shards.clear()
        else:
            self._shards.pop(shard, None)

    def _log_transition(
        self, shard: int, previous: StoreStatus, current: StoreStatus, raw: Union[StoreStatus, str]
    ) -> None:
        if current is not StoreStatus.UNKNOWN:
            self.logger.debug("[ Redis_%d ] %s -> %s", shard, previous.value, current.value)
        elif raw != current.value:
            self.logger.warning("[ Redis_%d ] unrecognised status %r recorded as %s", shard, raw, current.value)
        else:
            self.logger.warning("[ Redis_%d ] %s -> %s", shard, previous.value, current.value)
