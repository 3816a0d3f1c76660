"""Postgres-backed repository for worker lifecycle rows using SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.jobs.models import WorkerLifecycleRecord, WorkerStatus
from app.schema.workers import WorkerLifecycle
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository
from app.utils.ids import generate_lifecycle_id


def _now() -> datetime:
  return datetime.now(UTC)


class PostgresWorkerLifecycleRepository(WorkerLifecycleRepository):
  """Persist worker lifecycle rows to Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = require_session_factory(session_factory)

  async def create(self, *, worker_type: str, status: WorkerStatus = "STARTING", meta: dict[str, Any] | None = None, lifecycle_id: str | None = None) -> WorkerLifecycleRecord:
    async with self._session_factory() as session:
      row = WorkerLifecycle(id=lifecycle_id or generate_lifecycle_id(), type=worker_type, status=status, meta=meta)
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return _to_record(row)

  async def get(self, lifecycle_id: str) -> WorkerLifecycleRecord | None:
    async with self._session_factory() as session:
      row = await session.get(WorkerLifecycle, lifecycle_id)
      return _to_record(row) if row is not None else None

  async def list_by_status(self, status: WorkerStatus) -> list[WorkerLifecycleRecord]:
    async with self._session_factory() as session:
      stmt = select(WorkerLifecycle).where(WorkerLifecycle.status == status).order_by(WorkerLifecycle.created_at.asc())
      return [_to_record(row) for row in (await session.execute(stmt)).scalars().all()]

  async def list_recent(self, *, limit: int = 100) -> list[WorkerLifecycleRecord]:
    async with self._session_factory() as session:
      stmt = select(WorkerLifecycle).order_by(WorkerLifecycle.created_at.desc()).limit(limit)
      return [_to_record(row) for row in (await session.execute(stmt)).scalars().all()]

  async def count_by_status(self) -> dict[str, int]:
    async with self._session_factory() as session:
      stmt = select(WorkerLifecycle.status, func.count()).group_by(WorkerLifecycle.status)
      return {str(status): int(count) for status, count in (await session.execute(stmt)).all()}

  async def mark_running(self, lifecycle_id: str, *, pid: int | None, host: str | None, meta: dict[str, Any] | None = None) -> None:
    now = _now()
    values: dict[str, Any] = {"status": "RUNNING", "pid": pid, "host": host, "started_at": now, "last_heartbeat_at": now}
    if meta is not None:
      values["meta"] = meta
    await self._update(lifecycle_id, values)

  async def mark_exited(self, lifecycle_id: str, *, status: WorkerStatus, meta: dict[str, Any] | None = None) -> None:
    values: dict[str, Any] = {"status": status, "stopped_at": _now()}
    if meta is not None:
      values["meta"] = meta
    await self._update(lifecycle_id, values)

  async def ensure_registered(self, lifecycle_id: str, *, worker_type: str, pid: int, host: str) -> WorkerLifecycleRecord:
    now = _now()
    async with self._session_factory() as session:
      stmt = (
        insert(WorkerLifecycle)
        .values(id=lifecycle_id, type=worker_type, status="RUNNING", pid=pid, host=host, started_at=now, last_heartbeat_at=now)
        .on_conflict_do_update(index_elements=[WorkerLifecycle.id], set_={"status": "RUNNING", "pid": pid, "host": host, "last_heartbeat_at": now})
        .returning(WorkerLifecycle)
      )
      row = (await session.execute(stmt)).scalar_one()
      await session.commit()
      return _to_record(row)

  async def heartbeat(self, lifecycle_id: str) -> None:
    await self._update(lifecycle_id, {"last_heartbeat_at": _now()})

  async def set_status(self, lifecycle_id: str, status: WorkerStatus) -> None:
    values: dict[str, Any] = {"status": status}
    if status in {"STOPPED", "FAILED"}:
      values["stopped_at"] = _now()
    await self._update(lifecycle_id, values)

  async def _update(self, lifecycle_id: str, values: dict[str, Any]) -> None:
    async with self._session_factory() as session:
      await session.execute(update(WorkerLifecycle).where(WorkerLifecycle.id == lifecycle_id).values(**values))
      await session.commit()


def _to_record(row: WorkerLifecycle) -> WorkerLifecycleRecord:
  return WorkerLifecycleRecord(
    id=row.id,
    type=row.type,
    status=row.status,  # type: ignore[arg-type]
    host=row.host,
    pid=row.pid,
    meta=row.meta,
    created_at=row.created_at,
    started_at=row.started_at,
    last_heartbeat_at=row.last_heartbeat_at,
    stopped_at=row.stopped_at,
  )
