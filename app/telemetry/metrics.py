"""Prometheus metrics for the orchestrator and scheduled jobs.

Every helper swallows its own errors: metrics are observability only and must
never change the outcome of a job run or a spawn.
"""

from __future__ import annotations

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry(auto_describe=True)

JOBS_SPAWNED = Counter("orchestrator_jobs_spawned_total", "Worker processes or cluster Jobs spawned by the orchestrator", ["mode"], registry=REGISTRY)
WORKERS_RUNNING = Gauge("orchestrator_workers_running", "Worker lifecycle rows currently RUNNING", registry=REGISTRY)
JOB_RUNS = Counter("scheduled_job_runs_total", "Scheduled job runs by outcome", ["job", "status"], registry=REGISTRY)
HYDRATION_JOBS_CREATED = Counter("hydration_jobs_created_total", "Hydration child jobs created by fan-out", ["level"], registry=REGISTRY)


def record_spawn(mode: str) -> None:
  try:
    JOBS_SPAWNED.labels(mode=mode).inc()
  except Exception:  # noqa: BLE001
    logger.debug("Failed to record spawn metric", exc_info=True)


def record_job_run(job: str, status: str) -> None:
  try:
    JOB_RUNS.labels(job=job, status=status).inc()
  except Exception:  # noqa: BLE001
    logger.debug("Failed to record job run metric", exc_info=True)


def record_jobs_created(level: int, count: int) -> None:
  if count <= 0:
    return
  try:
    HYDRATION_JOBS_CREATED.labels(level=str(level)).inc(count)
  except Exception:  # noqa: BLE001
    logger.debug("Failed to record fan-out metric", exc_info=True)


def set_workers_running(count: int) -> None:
  try:
    WORKERS_RUNNING.set(count)
  except Exception:  # noqa: BLE001
    logger.debug("Failed to set workers gauge", exc_info=True)


def render_latest() -> bytes:
  """Return the registry in Prometheus text exposition format."""
  return generate_latest(REGISTRY)
