"""Admin APIs for requesting worker spawns and drains."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import msgspec
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from app.api.deps import get_worker_admin_service
from app.api.msgspec_utils import decode_msgspec_request, encode_msgspec_response
from app.jobs.models import WorkerLifecycleRecord
from app.services.workers import UnknownWorkerActionError, WorkerAdminService, WorkerNotFoundError, heartbeat_age_ms

router = APIRouter()


class WorkerActionRequest(msgspec.Struct, rename="camel"):
  """Request payload for one worker action."""

  action: str
  type: str | None = None
  lifecycle_id: str | None = None
  drain: bool = True


class WorkerResponse(msgspec.Struct, rename="camel"):
  """One worker lifecycle row."""

  id: str
  type: str
  status: str
  host: str | None
  pid: int | None
  meta: dict[str, Any] | None
  created_at: str | None
  started_at: str | None
  last_heartbeat_at: str | None
  stopped_at: str | None
  last_heartbeat_age_ms: int | None


class WorkerListResponse(msgspec.Struct):
  items: list[WorkerResponse]


def _iso(value: datetime | None) -> str | None:
  return value.isoformat() if value else None


def _worker_response(record: WorkerLifecycleRecord, now: datetime) -> WorkerResponse:
  return WorkerResponse(
    id=record.id,
    type=record.type,
    status=record.status,
    host=record.host,
    pid=record.pid,
    meta=record.meta,
    created_at=_iso(record.created_at),
    started_at=_iso(record.started_at),
    last_heartbeat_at=_iso(record.last_heartbeat_at),
    stopped_at=_iso(record.stopped_at),
    last_heartbeat_age_ms=heartbeat_age_ms(record, now),
  )


@router.get("")
async def list_workers(service: WorkerAdminService = Depends(get_worker_admin_service)):  # noqa: B008
  """List the newest worker lifecycle rows."""
  records = await service.list_workers()
  now = service.now()
  return encode_msgspec_response(WorkerListResponse(items=[_worker_response(record, now) for record in records]))


@router.post("")
async def act_on_worker(request: Request, service: WorkerAdminService = Depends(get_worker_admin_service), x_admin_user: str | None = Header(default=None)):  # noqa: B008
  """Request a worker spawn (start) or a drain/stop (stop)."""
  payload = await decode_msgspec_request(request, WorkerActionRequest)
  try:
    record = await service.apply(payload.action, worker_type=payload.type, lifecycle_id=payload.lifecycle_id, drain=payload.drain, actor=x_admin_user)
  except UnknownWorkerActionError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  except WorkerNotFoundError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found.") from exc
  status_code = status.HTTP_201_CREATED if payload.action == "start" else status.HTTP_200_OK
  return encode_msgspec_response(_worker_response(record, service.now()), status_code=status_code)
