"""Admin APIs for submitting and following hydration trees."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status

from app.api.deps import get_hydration_service
from app.api.models import HydrateAllListResponse, HydrateAllRequest, HydrateAllRetryResponse, HydrateAllStatusResponse, HydrateAllSubmitResponse
from app.services.hydration import HydrationService
from app.storage.hydration_repo import HydrationJobNotFoundError, InvalidJobTransitionError

router = APIRouter()

_JOB_NOT_FOUND_MSG = "Hydration job not found."


@router.post("", response_model=HydrateAllSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_hydration(
  payload: HydrateAllRequest, response: Response, service: HydrationService = Depends(get_hydration_service), x_admin_user: str | None = Header(default=None)  # noqa: B008
) -> HydrateAllSubmitResponse:
  """Create a root hydration job; a dry run only returns estimates."""
  result = await service.submit(payload, actor=x_admin_user)
  if payload.options.dry_run:
    response.status_code = status.HTTP_200_OK
  return result


@router.get("", response_model=HydrateAllListResponse)
async def list_hydrations(
  status_filter: Literal["pending", "running", "completed", "failed"] | None = Query(default=None, alias="status"),
  limit: int = Query(default=20, ge=1, le=100),
  offset: int = Query(default=0, ge=0),
  service: HydrationService = Depends(get_hydration_service),  # noqa: B008
) -> HydrateAllListResponse:
  """Return a page of root jobs, newest first."""
  return await service.list_roots(status=status_filter, limit=limit, offset=offset)


@router.get("/{job_id}", response_model=HydrateAllStatusResponse)
async def get_hydration_status(job_id: str, service: HydrationService = Depends(get_hydration_service)) -> HydrateAllStatusResponse:  # noqa: B008
  try:
    return await service.get_status(job_id)
  except HydrationJobNotFoundError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG) from exc


@router.post("/{job_id}/retry", response_model=HydrateAllRetryResponse)
async def retry_hydration_job(job_id: str, service: HydrationService = Depends(get_hydration_service), x_admin_user: str | None = Header(default=None)) -> HydrateAllRetryResponse:  # noqa: B008
  """Send a failed job back to pending."""
  try:
    return await service.retry(job_id, actor=x_admin_user)
  except HydrationJobNotFoundError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG) from exc
  except InvalidJobTransitionError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
