"""Maintenance services for scheduled background cleanup tasks."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from app.jobs.models import HYDRATION_QUEUE
from app.storage.hydration_repo import HydrationJobsRepository

logger = logging.getLogger(__name__)


async def reclaim_stale_claims(jobs_repo: HydrationJobsRepository, *, stale_after_sec: int, queue: str = HYDRATION_QUEUE, clock: Callable[[], datetime] | None = None) -> int:
  """Hand running leaf jobs whose worker went away back to pending.

  How/Why:
    - A worker that dies mid-job leaves its row running with an old lockedAt.
    - Rows claimed longer than `stale_after_sec` ago are reset to pending and re-announced through the outbox.
    - Attempts are not reset so operators can still see how often a job was picked up.
  """
  now = (clock or (lambda: datetime.now(UTC)))()
  reclaimed = await jobs_repo.release_stale_claims(claimed_before=now - timedelta(seconds=stale_after_sec), queue=queue)
  for job in reclaimed:
    try:
      await jobs_repo.append_event(job_id=job.id, root_job_id=job.tree_id, event_type="reclaimed", message="Claim expired; job returned to pending", payload_json={"attempts": job.attempts})
    except Exception:  # noqa: BLE001
      logger.warning("Failed to append reclaim event for job %s", job.id, exc_info=True)
  if reclaimed:
    logger.info("Reclaimed %d stale hydration jobs", len(reclaimed))
  return len(reclaimed)
