"""Job table for the orchestrator's scheduler and the one-shot CLI."""

from __future__ import annotations

from dataclasses import dataclass

from app.config import Settings
from app.jobs.lock import JobLockService
from app.jobs.reconciler import RECONCILER_LOCK_NAME, RECONCILER_LOCK_TTL_MS, HydrationReconciler
from app.jobs.registry import JobDefinition, JobRegistry, JobSchedule
from app.jobs.runner import JobRunner
from app.services.maintenance import reclaim_stale_claims
from app.services.outbox import OutboxDispatcher
from app.services.tasks.factory import get_task_enqueuer
from app.storage.factory import _get_audit_repo, _get_hydration_repo, _get_job_lock_repo, _get_outbox_repo
from app.storage.hydration_repo import HydrationJobsRepository
from app.telemetry.audit import AuditLogger

OUTBOX_DISPATCHER_JOB = "outbox_dispatcher"
STALE_CLAIMS_JOB = "hydration_stale_claims"
STALE_CLAIMS_EVERY_SEC = 5 * 60
OUTBOX_TIMEOUT_MS = 60 * 1000
STALE_CLAIMS_TIMEOUT_MS = 2 * 60 * 1000


def build_job_registry(*, settings: Settings, reconciler: HydrationReconciler, dispatcher: OutboxDispatcher | None, jobs_repo: HydrationJobsRepository) -> JobRegistry:
  """Register every scheduled job. The runner holds the lock, so the reconciler runs unlocked inside it."""
  registry = JobRegistry()
  registry.register_job(
    JobDefinition(
      name=RECONCILER_LOCK_NAME,
      lock_key=RECONCILER_LOCK_NAME,
      timeout_ms=RECONCILER_LOCK_TTL_MS,
      schedule=JobSchedule(every_sec=settings.reconciler_interval_sec),
      run=reconciler.reconcile_once,
    )
  )
  if dispatcher is not None:
    registry.register_job(
      JobDefinition(
        name=OUTBOX_DISPATCHER_JOB,
        lock_key=OUTBOX_DISPATCHER_JOB,
        timeout_ms=OUTBOX_TIMEOUT_MS,
        schedule=JobSchedule(every_sec=settings.outbox_poll_sec),
        run=dispatcher.dispatch_batch,
      )
    )

  async def _reclaim() -> int:
    return await reclaim_stale_claims(jobs_repo, stale_after_sec=settings.stale_claim_sec)

  registry.register_job(
    JobDefinition(
      name=STALE_CLAIMS_JOB,
      lock_key=STALE_CLAIMS_JOB,
      timeout_ms=STALE_CLAIMS_TIMEOUT_MS,
      schedule=JobSchedule(every_sec=STALE_CLAIMS_EVERY_SEC),
      run=_reclaim,
    )
  )
  return registry


@dataclass
class JobRuntime:
  registry: JobRegistry
  runner: JobRunner


def build_job_runtime(settings: Settings) -> JobRuntime:
  """Wire Postgres-backed repositories into the registry and a runner."""
  jobs_repo = _get_hydration_repo(settings)
  audit = AuditLogger(_get_audit_repo(settings))
  lock_service = JobLockService(_get_job_lock_repo(settings))
  reconciler = HydrationReconciler(jobs_repo, batch_size=settings.reconciler_batch_size)
  # Without a queue endpoint, workers still find jobs by polling claim_next.
  dispatcher = OutboxDispatcher(_get_outbox_repo(settings), get_task_enqueuer(settings), batch_size=settings.outbox_batch_size) if settings.queue_url else None
  registry = build_job_registry(settings=settings, reconciler=reconciler, dispatcher=dispatcher, jobs_repo=jobs_repo)
  return JobRuntime(registry=registry, runner=JobRunner(lock_service, audit=audit))
