from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status
from pydantic import BaseModel, StrictStr

from app.api.deps import get_job_processor, get_reconciler
from app.config import Settings, get_settings
from app.jobs.reconciler import HydrationReconciler
from app.jobs.worker import HydrationJobProcessor, handle_hydration_task

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


class TaskPayload(BaseModel):
  job_id: StrictStr
  job_type: StrictStr


def _require_task_secret(settings: Settings, authorization: str | None) -> None:
  # Secure-by-default: internal task endpoints must be authenticated to avoid arbitrary job execution.
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  if not secrets.compare_digest((authorization or ""), f"Bearer {settings.task_secret}"):
    logger.warning("Unauthorized access attempt to /hydration-job")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")


@router.post("/hydration-job", status_code=status.HTTP_202_ACCEPTED)
async def hydration_job_task(
  payload: TaskPayload,
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  processor: Annotated[HydrationJobProcessor, Depends(get_job_processor)],
  reconciler: Annotated[HydrationReconciler, Depends(get_reconciler)],
  authorization: str | None = Header(default=None),
) -> dict[str, str]:
  """Accept one outbox delivery and process it after responding."""
  _require_task_secret(settings, authorization)
  logger.info("Received %s task for job %s", payload.job_type, payload.job_id)
  background_tasks.add_task(handle_hydration_task, payload.job_id, payload.job_type, processor=processor, reconciler=reconciler)
  return {"status": "accepted"}
