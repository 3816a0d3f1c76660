"""Leader election for k8s mode on a Postgres session-level advisory lock."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

logger = logging.getLogger(__name__)


class AdvisoryLeaderLock:
  """Non-blocking try-acquire; the lock lives as long as its dedicated connection.

  If the process dies, Postgres ends the session and another replica can take over.
  """

  def __init__(self, engine: AsyncEngine, lock_id: int) -> None:
    self._engine = engine
    self._lock_id = lock_id
    self._conn: AsyncConnection | None = None

  @property
  def held(self) -> bool:
    return self._conn is not None

  async def try_acquire(self) -> bool:
    """Return True when this process is (still) the leader."""
    if self._conn is not None:
      if await self._still_alive():
        return True
      logger.warning("Leader connection lost; leadership released")
      await self._discard()

    conn = await self._engine.connect()
    try:
      conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
      acquired = bool((await conn.execute(text("SELECT pg_try_advisory_lock(:lock_id)"), {"lock_id": self._lock_id})).scalar())
    except Exception:
      await conn.close()
      raise
    if not acquired:
      await conn.close()
      return False
    self._conn = conn
    logger.info("Acquired leader lock %s", self._lock_id)
    return True

  async def release(self) -> None:
    if self._conn is None:
      return
    try:
      await self._conn.execute(text("SELECT pg_advisory_unlock(:lock_id)"), {"lock_id": self._lock_id})
    except Exception:  # noqa: BLE001
      logger.warning("Failed to unlock leader lock %s; closing the session releases it", self._lock_id, exc_info=True)
    await self._discard()

  async def _still_alive(self) -> bool:
    assert self._conn is not None
    try:
      await self._conn.execute(text("SELECT 1"))
    except Exception:  # noqa: BLE001
      return False
    return True

  async def _discard(self) -> None:
    conn, self._conn = self._conn, None
    if conn is None:
      return
    try:
      await conn.close()
    except Exception:  # noqa: BLE001
      logger.debug("Closing leader connection failed", exc_info=True)
