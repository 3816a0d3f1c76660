"""Run one registered job under its lock with a timeout."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Literal

from app.jobs.lock import JobLockService
from app.jobs.registry import JobDefinition
from app.telemetry import metrics
from app.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)

JobRunStatus = Literal["SUCCESS", "FAILED", "TIMED_OUT", "SKIPPED"]


@dataclass(frozen=True)
class JobRunOutcome:
  """What happened to one invocation."""

  name: str
  status: JobRunStatus
  duration_ms: int = 0
  reason: str | None = None
  error: str | None = None
  result: object = None


class JobRunner:
  """Execute registered jobs without ever raising into the host loop."""

  def __init__(self, lock_service: JobLockService, *, audit: AuditLogger | None = None) -> None:
    self._locks = lock_service
    self._audit = audit or AuditLogger(None)

  async def run(self, job: JobDefinition) -> JobRunOutcome:
    lock = await self._locks.acquire(job.lock_key, job.timeout_ms)
    if lock.skipped:
      # Contention is a successful no-op, not a failure.
      logger.info("Job %s skipped: %s", job.name, lock.reason)
      await self._audit.record("JOB_RUN", {"job": job.name, "status": "SKIPPED", "reason": lock.reason})
      metrics.record_job_run(job.name, "SKIPPED")
      return JobRunOutcome(name=job.name, status="SKIPPED", reason=lock.reason)

    started = time.monotonic()
    await self._audit.record("JOB_RUN", {"job": job.name, "status": "STARTED"})
    try:
      result = await asyncio.wait_for(job.run(), timeout=job.timeout_ms / 1000)
      outcome = JobRunOutcome(name=job.name, status="SUCCESS", duration_ms=_elapsed_ms(started), result=result)
      logger.info("Job %s succeeded in %dms", job.name, outcome.duration_ms)
    except TimeoutError:
      outcome = JobRunOutcome(name=job.name, status="TIMED_OUT", duration_ms=_elapsed_ms(started), error=f"timed out after {job.timeout_ms}ms")
      logger.error("Job %s timed out after %dms", job.name, job.timeout_ms)
    except asyncio.CancelledError:
      raise
    except Exception as exc:  # noqa: BLE001
      outcome = JobRunOutcome(name=job.name, status="FAILED", duration_ms=_elapsed_ms(started), error=f"{type(exc).__name__}: {exc}")
      logger.error("Job %s failed", job.name, exc_info=True)
    finally:
      await self._locks.release(job.lock_key)

    await self._audit.record("JOB_RUN", {"job": job.name, "status": outcome.status, "durationMs": outcome.duration_ms, "error": outcome.error})
    metrics.record_job_run(job.name, outcome.status)
    return outcome


def _elapsed_ms(started: float) -> int:
  return int((time.monotonic() - started) * 1000)
