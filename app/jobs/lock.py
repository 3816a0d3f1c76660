"""Named TTL locks that keep scheduled jobs from overlapping."""

from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass

from app.storage.job_lock_repo import JobLockRepository
from app.utils.ids import generate_nanoid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockResult:
  """Outcome of one acquire attempt. skipped is the inverse of acquired."""

  acquired: bool
  reason: str | None = None

  @property
  def skipped(self) -> bool:
    return not self.acquired


def default_lock_owner() -> str:
  """Return an owner tag unique to this process instance."""
  return f"{socket.gethostname()}:{os.getpid()}:{generate_nanoid(8)}"


class JobLockService:
  """Acquire and release named locks, failing closed on storage errors."""

  def __init__(self, repo: JobLockRepository, *, owner: str | None = None) -> None:
    self._repo = repo
    self._owner = owner or default_lock_owner()

  @property
  def owner(self) -> str:
    return self._owner

  async def acquire(self, name: str, ttl_ms: int) -> LockResult:
    """Try to take the lock once; never blocks or retries."""
    if ttl_ms <= 0:
      raise ValueError("ttl_ms must be positive.")
    try:
      acquired = await self._repo.try_acquire(name=name, owner=self._owner, ttl_ms=ttl_ms)
    except Exception:  # noqa: BLE001
      # Callers must never proceed on an acquisition error.
      logger.warning("Lock acquire failed for %s; treating as not held.", name, exc_info=True)
      return LockResult(acquired=False, reason="error")
    if not acquired:
      return LockResult(acquired=False, reason="locked")
    return LockResult(acquired=True)

  async def release(self, name: str) -> None:
    """Release a lock held by this owner. Released or expired locks are a no-op."""
    try:
      await self._repo.release(name=name, owner=self._owner)
    except Exception:  # noqa: BLE001
      # The TTL frees the lock eventually.
      logger.warning("Lock release failed for %s; it will expire on its TTL.", name, exc_info=True)
