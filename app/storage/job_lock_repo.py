"""Storage interfaces for named job locks."""

from __future__ import annotations

from typing import Protocol


class JobLockRepository(Protocol):
  """Repository contract for TTL locks keyed by job name."""

  async def try_acquire(self, *, name: str, owner: str, ttl_ms: int) -> bool:
    """Take the lock in one compare-and-set; return False when an unexpired holder exists."""

  async def release(self, *, name: str, owner: str) -> None:
    """Drop the lock when it is still held by owner."""
