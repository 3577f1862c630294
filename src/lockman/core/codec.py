"""Store key and ownership token construction."""

from __future__ import annotations

import collections.abc
import math
import secrets
from typing import Optional, Sequence, Union

from .errors import InvalidArgument


KEY_SEPARATOR = "-"

SubKeyInput = Union[str, int, Sequence[Union[str, int]], None]


def join_sub_key(sub_key: SubKeyInput) -> Optional[str]:
    """Flatten a sub-key into its string form, or None when absent.

    ``None``, ``""`` and an empty sequence are absent. The integer ``0`` is a
    real sub-key and joins as ``"0"``, so ``lock("a", 0)`` locks ``a-0``,
    not ``a``.
    """
    if sub_key is None:
        return None
    if isinstance(sub_key, bool):
        raise InvalidArgument(f"Unsupported sub key type: {type(sub_key).__name__}")
    if isinstance(sub_key, (str, int)):
        joined = str(sub_key)
    elif isinstance(sub_key, collections.abc.Sequence):
        for part in sub_key:
            if isinstance(part, bool) or not isinstance(part, (str, int)):
                raise InvalidArgument(f"Unsupported sub key element: {part!r}")
        joined = KEY_SEPARATOR.join(str(part) for part in sub_key)
    else:
        raise InvalidArgument(f"Unsupported sub key type: {type(sub_key).__name__}")
    return joined or None


def build_key(prefix: str, key: str, sub_key: SubKeyInput = None) -> str:
    """Return ``prefix + key [+ '-' + sub_key]``."""
    if not isinstance(key, str) or not key:
        raise InvalidArgument("Lock key must be a non-empty string")
    lock_key = prefix + key
    joined = join_sub_key(sub_key)
    if joined is not None:
        lock_key = lock_key + KEY_SEPARATOR + joined
    return lock_key


def build_token(length: int, prefix: Optional[str] = None) -> str:
    """Random hex token of exactly ``length`` characters, optionally prefixed."""
    if length < 1:
        raise InvalidArgument("Token length must be positive")
    value = secrets.token_hex(math.ceil(length / 2))[:length]
    if prefix:
        value = prefix + value
    return value
