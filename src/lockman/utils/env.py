"""Readers for the ``LOCKMAN_*`` environment variables used by the scripts.

Blank values count as unset. Values that are set but unparseable raise
``ValueError`` naming the variable.
"""

from __future__ import annotations

import os
import shlex
from typing import List, Optional, Sequence


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _read(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def get_bool_env(name: str, *, default: bool = False) -> bool:
    value = _read(name)
    if value is None:
        return default
    flag = value.lower()
    if flag in _TRUE_VALUES:
        return True
    if flag in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be one of {sorted(_TRUE_VALUES | _FALSE_VALUES)}, got {value!r}")


def get_int_env(name: str, *, default: Optional[int] = None) -> Optional[int]:
    value = _read(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def get_list_env(name: str, *, default: Optional[Sequence[str]] = None) -> List[str]:
    """Split a list of store URLs separated by whitespace or commas.

    Shell-style quotes keep an item together, e.g.
    ``redis://a:6379/0,"redis://b:6379/0?name=x y"``.
    """
    value = _read(name)
    if value is None:
        return list(default or [])
    lexer = shlex.shlex(value, posix=True)
    lexer.whitespace += ","
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        return [item for item in lexer if item]
    except ValueError as exc:
        raise ValueError(f"{name} has unbalanced quotes: {value!r}") from exc
