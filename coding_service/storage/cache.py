"""Key/value cache primitives used for statistics and variable listings."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from typing import Any, NamedTuple, Protocol

from cachetools import TLRUCache

_DEFAULT_MAXSIZE = 1024


class CacheStore(Protocol):
  """Cache contract with per-entry time-to-live."""

  async def get(self, key: str) -> Any | None:
    """Return the cached value or None when missing or expired."""

  async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
    """Store a value, optionally expiring after ttl_seconds."""

  async def delete(self, key: str) -> None:
    """Remove a key if present."""


class _CacheEntry(NamedTuple):
  value: Any
  ttl_seconds: int | None


def _time_to_use(_key: str, entry: _CacheEntry, now: float) -> float:
  return now + entry.ttl_seconds if entry.ttl_seconds else math.inf


class InMemoryCacheStore:
  """Process-local cache store."""

  def __init__(self, *, maxsize: int = _DEFAULT_MAXSIZE, clock: Callable[[], float] = time.monotonic) -> None:
    self._entries: TLRUCache[str, _CacheEntry] = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=clock)

  async def get(self, key: str) -> Any | None:
    entry = self._entries.get(key)
    return entry.value if entry is not None else None

  async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
    self._entries[key] = _CacheEntry(value=value, ttl_seconds=ttl_seconds)

  async def delete(self, key: str) -> None:
    self._entries.pop(key, None)


def coding_statistics_key(workspace_id: int) -> str:
  return f"coding-statistics:{workspace_id}"


def incomplete_variables_key(workspace_id: int) -> str:
  return f"coding_incomplete_variables:{workspace_id}"
