"""Leaf job processor: claim, generate, then complete or fail one job row."""

from __future__ import annotations

import asyncio
import logging

from app.jobs.dispatch import JobProcessorRegistry
from app.jobs.models import JOB_TYPE_BY_LEVEL, LEVEL_ROOT, HydrationJobRecord
from app.jobs.reconciler import HydrationReconciler
from app.storage.hydration_repo import HydrationJobsRepository

logger = logging.getLogger(__name__)


class HydrationJobProcessor:
  """Honors the leaf contract: pending -> running -> completed | failed.

  Only the claimed row is written; fan-out and counters belong to the reconciler.
  """

  def __init__(self, *, jobs_repo: HydrationJobsRepository, registry: JobProcessorRegistry) -> None:
    self._jobs = jobs_repo
    self._registry = registry

  async def process_job(self, job_id: str) -> HydrationJobRecord | None:
    """Claim and process a specific job; returns None when it was not claimable."""
    job = await self._jobs.claim_job(job_id)
    if job is None:
      logger.info("Job %s is not pending; nothing to do.", job_id)
      return None
    return await self._run(job)

  async def process_next(self) -> HydrationJobRecord | None:
    """Claim the oldest pending job this processor can handle."""
    job = await self._jobs.claim_next(job_types=self._registry.job_types())
    if job is None:
      return None
    return await self._run(job)

  async def _run(self, job: HydrationJobRecord) -> HydrationJobRecord | None:
    logger.info("Processing %s job %s (attempt %d)", job.job_type, job.id, job.attempts)
    await self._event(job, "claimed", f"Claimed {job.job_type} job", {"attempt": job.attempts})
    try:
      handler = self._registry.resolve(job.job_type)
      output = await handler.process(job)
    except asyncio.CancelledError:
      # Left running on purpose; the stale-claim sweep hands it back out.
      raise
    except Exception as exc:  # noqa: BLE001
      error = f"{type(exc).__name__}: {exc}"
      logger.warning("Job %s failed: %s", job.id, error, exc_info=True)
      finished = await self._jobs.fail_job(job.id, error=error)
      await self._event(job, "failed", f"{job.job_type} job failed", {"error": error})
      return finished

    finished = await self._jobs.complete_job(job.id, result_json=output.result_json, cost_usd=output.cost_usd)
    await self._event(job, "completed", f"{job.job_type} job completed", {"costUsd": output.cost_usd})
    return finished

  async def _event(self, job: HydrationJobRecord, event_type: str, message: str, payload: dict[str, object]) -> None:
    try:
      await self._jobs.append_event(job_id=job.id, root_job_id=job.tree_id, event_type=event_type, message=message, payload_json=payload)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to append %s event for job %s", event_type, job.id, exc_info=True)


async def handle_hydration_task(job_id: str, job_type: str, *, processor: HydrationJobProcessor, reconciler: HydrationReconciler) -> None:
  """Act on one delivered queue message.

  A root message triggers a locked reconciler tick so level 1 appears without
  waiting for the next interval; every other type is a leaf job to process.
  """
  try:
    if job_type == JOB_TYPE_BY_LEVEL[LEVEL_ROOT]:
      await reconciler.reconcile()
      return
    await processor.process_job(job_id)
  except Exception:  # noqa: BLE001
    # Runs as a background task; nothing upstream would see the error.
    logger.error("Task for %s job %s failed", job_type, job_id, exc_info=True)
