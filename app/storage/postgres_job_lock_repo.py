"""Postgres-backed TTL locks using a single conditional upsert."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.schema.workers import JobLock
from app.storage.job_lock_repo import JobLockRepository


def build_acquire_statement(*, name: str, owner: str, now: datetime, ttl_ms: int) -> Insert:
  """Build INSERT .. ON CONFLICT DO UPDATE .. WHERE expires_at < now RETURNING name.

  A row comes back only when the lock was free or expired, so one statement
  decides ownership for every concurrent caller.
  """
  expires_at = now + timedelta(milliseconds=ttl_ms)
  stmt = insert(JobLock).values(name=name, owner=owner, acquired_at=now, expires_at=expires_at)
  return stmt.on_conflict_do_update(
    index_elements=[JobLock.name],
    set_={"owner": stmt.excluded.owner, "acquired_at": stmt.excluded.acquired_at, "expires_at": stmt.excluded.expires_at},
    where=JobLock.expires_at < now,
  ).returning(JobLock.name)


class PostgresJobLockRepository(JobLockRepository):
  """Persist named locks in the job_locks table."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = require_session_factory(session_factory)

  async def try_acquire(self, *, name: str, owner: str, ttl_ms: int) -> bool:
    stmt = build_acquire_statement(name=name, owner=owner, now=datetime.now(UTC), ttl_ms=ttl_ms)
    async with self._session_factory() as session:
      acquired_name = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return acquired_name is not None

  async def release(self, *, name: str, owner: str) -> None:
    async with self._session_factory() as session:
      await session.execute(delete(JobLock).where(JobLock.name == name, JobLock.owner == owner))
      await session.commit()
