"""Storage interfaces for hydration job trees."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from app.jobs.models import ChildJobSpec, HydrationJobRecord, JobStatus, LevelCounters, LevelStatusCounts


class HydrationJobNotFoundError(LookupError):
  """Raised when a job id does not exist."""


class InvalidJobTransitionError(ValueError):
  """Raised when a job is asked to move to a state its current status does not allow."""


@dataclass(frozen=True)
class JobEventRecord:
  """Timeline entry surfaced as recentLogs on the status API."""

  job_id: str
  event_type: str
  message: str
  created_at: datetime
  payload_json: dict[str, Any] | None = None


class HydrationJobsRepository(Protocol):
  """Repository contract for hydration job persistence.

  Every write is keyed by natural scoping fields so repeated calls with the
  same intent never create duplicate rows.
  """

  async def create_root_job(self, record: HydrationJobRecord, *, queue: str) -> HydrationJobRecord:
    """Persist a level-0 job and its outbox message in one transaction."""

  async def get_job(self, job_id: str) -> HydrationJobRecord | None:
    """Fetch a job by identifier."""

  async def list_open_roots(self, *, limit: int) -> list[HydrationJobRecord]:
    """Return root jobs that are not terminal yet, oldest first."""

  async def list_jobs(self, *, root_job_id: str, hierarchy_level: int, status: JobStatus | None = None) -> list[HydrationJobRecord]:
    """Find jobs by (root, level, status)."""

  async def count_by_status(self, *, root_job_id: str, hierarchy_level: int) -> LevelStatusCounts:
    """Count jobs under a root at one level grouped by status."""

  async def insert_children_if_absent(self, *, root: HydrationJobRecord, specs: list[ChildJobSpec], queue: str) -> list[HydrationJobRecord]:
    """Insert the child jobs that do not exist yet and return only the new ones."""

  async def update_job(self, job_id: str, *, status: JobStatus | None = None, counters: LevelCounters | None = None, cost_usd: float | None = None, started_at: datetime | None = None, completed_at: datetime | None = None) -> HydrationJobRecord | None:
    """Apply partial status/timestamp/counter updates to a job."""

  async def complete_root_if_settled(self, root_job_id: str, *, completed_at: datetime) -> bool:
    """Mark an open root completed unless a descendant is pending or running; return whether it was written."""

  async def sum_descendant_cost(self, root_job_id: str) -> float:
    """Return the summed cost of every descendant of a root."""

  async def claim_job(self, job_id: str) -> HydrationJobRecord | None:
    """Atomically move one pending job to running."""

  async def claim_next(self, *, job_types: tuple[str, ...] | None = None) -> HydrationJobRecord | None:
    """Claim the oldest pending child job, skipping rows other workers hold."""

  async def complete_job(self, job_id: str, *, result_json: dict[str, Any] | None = None, cost_usd: float = 0.0) -> HydrationJobRecord | None:
    """Finish a running job successfully."""

  async def fail_job(self, job_id: str, *, error: str) -> HydrationJobRecord | None:
    """Finish a running job unsuccessfully and keep the error for operators."""

  async def mark_content_ready(self, job_id: str) -> None:
    """Flag that a job's content exists before its status flips."""

  async def reset_failed_job(self, job_id: str, *, queue: str) -> HydrationJobRecord:
    """Return a failed job to pending and reopen its root when needed."""

  async def release_stale_claims(self, *, claimed_before: datetime, queue: str) -> list[HydrationJobRecord]:
    """Return running jobs with an old claim to pending and announce them again."""

  async def list_roots(self, *, status: JobStatus | None, limit: int, offset: int) -> tuple[list[HydrationJobRecord], int]:
    """Return a page of root jobs, newest first, with the total count."""

  async def list_failed_jobs(self, root_job_id: str) -> list[HydrationJobRecord]:
    """Return failed descendants of a root, oldest first."""

  async def summarize_children(self, root_job_id: str) -> dict[str, dict[str, int]]:
    """Return {job_type: {status: count}} for a root's descendants."""

  async def count_content_ready(self, root_job_id: str) -> int:
    """Return how many descendants flagged their content as ready."""

  async def append_event(self, *, job_id: str, root_job_id: str, event_type: str, message: str, payload_json: dict[str, Any] | None = None) -> None:
    """Append one timeline event for a job."""

  async def list_events(self, *, root_job_id: str, limit: int = 20) -> list[JobEventRecord]:
    """List the newest events of a tree, returned oldest first."""
