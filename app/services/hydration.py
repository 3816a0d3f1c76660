"""Submission, status, listing and retry for hydration trees."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from app.api.models import (
  FailedJobSummary,
  HydrateAllEstimates,
  HydrateAllJobSummary,
  HydrateAllListResponse,
  HydrateAllRequest,
  HydrateAllRetryResponse,
  HydrateAllStatusResponse,
  HydrateAllSubmitResponse,
  HydrationCost,
  HydrationMetadata,
  HydrationProgress,
  HydrationTiming,
  JobLogEntry,
  LevelProgress,
)
from app.jobs.models import HYDRATION_QUEUE, JOB_TYPE_BY_LEVEL, LEVEL_ROOT, HydrationJobRecord, JobStatus
from app.jobs.progress import actual_duration_mins, level_pairs, overall_percent, unweighted_percent
from app.services.estimates import HydrationEstimate, estimate_hydration
from app.storage.catalog_repo import CatalogRepository
from app.storage.hydration_repo import HydrationJobNotFoundError, HydrationJobsRepository
from app.telemetry.audit import AuditLogger
from app.utils.ids import generate_job_id, generate_trace_id

logger = logging.getLogger(__name__)

DRY_RUN_JOB_ID = "dry-run"
RECENT_LOG_LIMIT = 20


def _iso(value: datetime | None) -> str | None:
  if value is None:
    return None
  return value.isoformat()


def _estimates_model(estimate: HydrationEstimate) -> HydrateAllEstimates:
  return HydrateAllEstimates.model_validate(estimate.to_json())


class HydrationService:
  """Admin operations on hydration trees.

  Only the submission path writes a root; everything below the root is created
  by the reconciler.
  """

  def __init__(self, *, jobs_repo: HydrationJobsRepository, catalog_repo: CatalogRepository, audit: AuditLogger, queue: str = HYDRATION_QUEUE, clock: Callable[[], datetime] | None = None) -> None:
    self._jobs = jobs_repo
    self._catalog = catalog_repo
    self._audit = audit
    self._queue = queue
    self._clock = clock or (lambda: datetime.now(UTC))

  async def submit(self, request: HydrateAllRequest, *, actor: str | None = None) -> HydrateAllSubmitResponse:
    """Create a root job, or only estimate it for a dry run."""
    options = request.options.to_options()
    estimate = estimate_hydration(options)
    trace_id = generate_trace_id()

    if options.dry_run:
      logger.info("Dry run for %s/%s/%s (%s)", request.board_code, request.grade, request.subject_code, trace_id)
      return HydrateAllSubmitResponse(root_job_id=DRY_RUN_JOB_ID, status="dry-run", estimates=_estimates_model(estimate), trace_id=trace_id)

    subject = await self._catalog.find_or_create_subject(board_code=request.board_code, grade=request.grade, code=request.subject_code, name=request.subject_name)
    record = HydrationJobRecord(
      id=generate_job_id(),
      hierarchy_level=LEVEL_ROOT,
      job_type=JOB_TYPE_BY_LEVEL[LEVEL_ROOT],
      language=request.language,
      status="pending",
      subject_id=subject.id,
      board=request.board_code,
      grade=request.grade,
      subject_code=request.subject_code,
      input_params={"options": options.to_json(), "traceId": trace_id, "subjectName": subject.name, "requestedBy": actor},
      counters=estimate.initial_counters(),
      estimated_cost_usd=estimate.estimated_cost_usd,
      estimated_duration_mins=estimate.estimated_duration_mins,
    )
    created = await self._jobs.create_root_job(record, queue=self._queue)
    logger.info("Created hydration root %s for subject %s (%s)", created.id, subject.id, trace_id)
    await self._audit.record(
      "HYDRATEALL_SUBMIT",
      {"rootJobId": created.id, "subjectId": subject.id, "language": request.language, "traceId": trace_id, "estimates": estimate.to_json()},
      actor=actor,
    )
    return HydrateAllSubmitResponse(root_job_id=created.id, status=created.status, estimates=_estimates_model(estimate), trace_id=trace_id, created_at=_iso(created.created_at))

  async def get_status(self, job_id: str) -> HydrateAllStatusResponse:
    """Return the progress view of a tree; child ids resolve to their root."""
    job = await self._jobs.get_job(job_id)
    if job is None:
      raise HydrationJobNotFoundError(job_id)
    root = job if job.is_root else await self._jobs.get_job(job.tree_id)
    if root is None:
      raise HydrationJobNotFoundError(job.tree_id)

    counters = root.counters
    levels = {name: LevelProgress(completed=completed, expected=expected) for name, (completed, expected) in level_pairs(counters).items()}
    events = await self._jobs.list_events(root_job_id=root.id, limit=RECENT_LOG_LIMIT)
    failed = await self._jobs.list_failed_jobs(root.id)

    return HydrateAllStatusResponse(
      root_job_id=root.id,
      status=root.status,
      progress=HydrationProgress(overall_percent=overall_percent(counters), levels=levels),
      timing=HydrationTiming(
        created_at=_iso(root.created_at),
        started_at=_iso(root.started_at),
        finished_at=_iso(root.completed_at),
        estimated_duration_mins=root.estimated_duration_mins,
        actual_duration_mins=actual_duration_mins(root.started_at, root.completed_at, now=self._clock()),
      ),
      cost=HydrationCost(estimated=root.estimated_cost_usd, actual=round(root.cost_usd, 4)),
      metadata=HydrationMetadata(
        language=root.language,
        board=root.board,
        grade=root.grade,
        subject=root.input_params.get("subjectName") or root.subject_code,
        subject_id=root.subject_id,
        trace_id=root.input_params.get("traceId"),
        options=root.options.to_json(),
      ),
      recent_logs=[JobLogEntry(job_id=event.job_id, event_type=event.event_type, message=event.message, created_at=event.created_at.isoformat(), payload=event.payload_json) for event in events],
      child_job_summary=await self._jobs.summarize_children(root.id),
      failed_jobs=[FailedJobSummary(id=item.id, job_type=item.job_type, hierarchy_level=item.hierarchy_level, last_error=item.last_error, created_at=_iso(item.created_at)) for item in failed],
      content_ready_jobs=await self._jobs.count_content_ready(root.id),
    )

  async def list_roots(self, *, status: JobStatus | None = None, limit: int = 20, offset: int = 0) -> HydrateAllListResponse:
    roots, total = await self._jobs.list_roots(status=status, limit=limit, offset=offset)
    items = [
      HydrateAllJobSummary(
        root_job_id=root.id,
        status=root.status,
        language=root.language,
        board=root.board,
        grade=root.grade,
        subject=root.input_params.get("subjectName") or root.subject_code,
        progress_percent=unweighted_percent(root.counters),
        cost_usd=round(root.cost_usd, 4),
        created_at=_iso(root.created_at),
        completed_at=_iso(root.completed_at),
      )
      for root in roots
    ]
    return HydrateAllListResponse(items=items, total=total, limit=limit, offset=offset)

  async def retry(self, job_id: str, *, actor: str | None = None) -> HydrateAllRetryResponse:
    """Send one failed job back to pending; the reconciler picks the tree up again."""
    job = await self._jobs.reset_failed_job(job_id, queue=self._queue)
    logger.info("Retrying hydration job %s (root %s)", job.id, job.tree_id)
    try:
      await self._jobs.append_event(job_id=job.id, root_job_id=job.tree_id, event_type="retried", message=f"{job.job_type} job sent back to pending", payload_json=None)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to append retry event for job %s", job.id, exc_info=True)
    await self._audit.record("HYDRATEALL_RETRY", {"jobId": job.id, "rootJobId": job.tree_id, "jobType": job.job_type}, actor=actor)
    return HydrateAllRetryResponse(job_id=job.id, root_job_id=job.tree_id, status=job.status)
