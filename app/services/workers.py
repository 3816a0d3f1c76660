"""Operator actions on worker lifecycle rows."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from app.jobs.models import HYDRATION_QUEUE, WorkerLifecycleRecord
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository
from app.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)

WORKER_LIST_LIMIT = 100


class WorkerNotFoundError(LookupError):
  """Raised when a lifecycle id does not exist."""


class UnknownWorkerActionError(ValueError):
  """Raised for actions other than start and stop."""


def heartbeat_age_ms(record: WorkerLifecycleRecord, now: datetime) -> int | None:
  if record.last_heartbeat_at is None:
    return None
  return max(0, int((now - record.last_heartbeat_at).total_seconds() * 1000))


class WorkerAdminService:
  """Requests spawns and drains; the orchestrator acts on them."""

  def __init__(self, repo: WorkerLifecycleRepository, audit: AuditLogger, *, clock: Callable[[], datetime] | None = None) -> None:
    self._repo = repo
    self._audit = audit
    self._clock = clock or (lambda: datetime.now(UTC))

  def now(self) -> datetime:
    return self._clock()

  async def list_workers(self, *, limit: int = WORKER_LIST_LIMIT) -> list[WorkerLifecycleRecord]:
    return await self._repo.list_recent(limit=limit)

  async def apply(self, action: str, *, worker_type: str | None = None, lifecycle_id: str | None = None, drain: bool = True, actor: str | None = None) -> WorkerLifecycleRecord:
    if action == "start":
      return await self.start(worker_type or HYDRATION_QUEUE, actor=actor)
    if action == "stop":
      if not lifecycle_id:
        raise UnknownWorkerActionError("stop requires a lifecycleId.")
      return await self.stop(lifecycle_id, drain=drain, actor=actor)
    raise UnknownWorkerActionError(f"Unknown worker action: {action}")

  async def start(self, worker_type: str, *, actor: str | None = None) -> WorkerLifecycleRecord:
    record = await self._repo.create(worker_type=worker_type, status="STARTING", meta={"requestedBy": actor} if actor else None)
    logger.info("Requested %s worker %s", worker_type, record.id)
    await self._audit.record("WORKER_START", {"lifecycleId": record.id, "type": worker_type}, actor=actor)
    return record

  async def stop(self, lifecycle_id: str, *, drain: bool = True, actor: str | None = None) -> WorkerLifecycleRecord:
    existing = await self._repo.get(lifecycle_id)
    if existing is None:
      raise WorkerNotFoundError(lifecycle_id)
    target = "DRAINING" if drain else "STOPPED"
    await self._repo.set_status(lifecycle_id, target)
    logger.info("Worker %s set to %s", lifecycle_id, target)
    await self._audit.record("WORKER_STOP", {"lifecycleId": lifecycle_id, "drain": drain, "status": target}, actor=actor)
    updated = await self._repo.get(lifecycle_id)
    return updated or existing
