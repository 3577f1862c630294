"""Mutex settings loader."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from lockman.core.errors import ConfigError
from lockman.core.router import MAX_STORES


DEFAULT_RETRY: Optional[int] = None  # no limit
DEFAULT_INTERVAL = 100  # msec
DEFAULT_EXPIRY = 10000  # msec
DEFAULT_KEY_PREFIX = "LOCKMAN#"
DEFAULT_VALUE_LENGTH = 12


class _Options(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SentinelStoreSettings(_Options):
    """One shard reached through a sentinel group."""

    sentinels: List[Tuple[str, int]] = Field(min_length=1)
    master_name: str = "mymaster"


class StoreSettings(_Options):
    """The store set: pre-built clients, sentinel groups or plain URLs."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    clients: Optional[List[Any]] = None
    sclients: Optional[List[SentinelStoreSettings]] = None
    urls: Optional[List[str]] = None
    # shared by every sentinel-built master connection
    master_option: Dict[str, Any] = Field(default_factory=dict)
    sentinel_option: Dict[str, Any] = Field(default_factory=dict)
    heartbeat_interval: int = Field(default=1000, gt=0)
    setup_timeout: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_store_set(self) -> "StoreSettings":
        kinds = [name for name in ("clients", "sclients", "urls") if getattr(self, name) is not None]
        if not kinds:
            raise ValueError("redis options need one of clients, sclients or urls")
        if len(kinds) > 1:
            raise ValueError(f"redis options are ambiguous: {', '.join(kinds)}")
        kind = kinds[0]
        count = len(getattr(self, kind))
        if count <= 0:
            raise ValueError(f"redis.{kind} is empty")
        if count > MAX_STORES:
            raise ValueError(f"redis.{kind} has too many stores. max = {MAX_STORES}")
        return self

    @property
    def kind(self) -> str:
        if self.clients is not None:
            return "clients"
        if self.sclients is not None:
            return "sclients"
        return "urls"

    @property
    def size(self) -> int:
        return len(getattr(self, self.kind))

    @property
    def builds_clients(self) -> bool:
        """True when the mutex creates the connections itself."""
        return self.kind != "clients"


def _default_store_settings() -> StoreSettings:
    return StoreSettings(sclients=[SentinelStoreSettings(sentinels=[("localhost", 26379)])])


class MutexSettings(_Options):
    retry: Optional[int] = Field(default=DEFAULT_RETRY, ge=0)
    interval: int = Field(default=DEFAULT_INTERVAL, ge=0)
    expiry: int = Field(default=DEFAULT_EXPIRY, gt=0)
    expiry_of_key: Dict[str, int] = Field(default_factory=dict)
    key_prefix: str = DEFAULT_KEY_PREFIX
    value_prefix: Optional[str] = None
    value_length: int = Field(default=DEFAULT_VALUE_LENGTH, ge=1)
    redis: StoreSettings = Field(default_factory=_default_store_settings)

    @field_validator("expiry_of_key")
    @classmethod
    def _positive_expiries(cls, value: Dict[str, int]) -> Dict[str, int]:
        for key, expiry in value.items():
            if expiry <= 0:
                raise ValueError(f"expiry_of_key[{key!r}] must be positive")
        return value

    def expiry_for(self, key: str) -> int:
        """Lease length for ``key``: its override, else the default expiry."""
        return self.expiry_of_key.get(key) or self.expiry

    @classmethod
    def parse(cls, data: Union["MutexSettings", Mapping[str, Any], None]) -> "MutexSettings":
        if data is None:
            raise ConfigError("option is not found.")
        if isinstance(data, MutexSettings):
            return data
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigError(f"Invalid mutex settings: {exc}") from exc

    @classmethod
    def from_file(cls, path: Path) -> "MutexSettings":
        try:
            data = yaml.safe_load(path.read_text())
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Unable to read mutex settings from {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigError(f"Mutex settings in {path} must be a mapping")
        return cls.parse(data)
