from __future__ import annotations

import asyncio

import pytest

from app.jobs.lock import JobLockService
from app.jobs.registry import DuplicateJobError, JobDefinition, JobRegistry, JobSchedule
from app.jobs.runner import JobRunner
from app.jobs.scheduler import IntervalScheduler
from app.telemetry.audit import AuditLogger
from tests.fakes import InMemoryAuditRepo, InMemoryJobLockRepo


def _job(name: str, run, *, timeout_ms: int = 1_000, every_sec: float | None = None) -> JobDefinition:
  return JobDefinition(name=name, lock_key=name, timeout_ms=timeout_ms, schedule=JobSchedule(every_sec=every_sec), run=run)


async def _ok() -> str:
  return "done"


def test_registry_rejects_duplicates_and_bad_schedules() -> None:
  registry = JobRegistry()
  registry.register_job(_job("reconciler", _ok, every_sec=60))

  with pytest.raises(DuplicateJobError):
    registry.register_job(_job("reconciler", _ok))
  with pytest.raises(ValueError):
    registry.register_job(_job("zero-timeout", _ok, timeout_ms=0))
  with pytest.raises(ValueError):
    registry.register_job(_job("zero-interval", _ok, every_sec=0))

  registry.register_job(_job("cron-only", _ok))
  assert "reconciler" in registry
  assert len(registry) == 2
  assert [job.name for job in registry.interval_jobs()] == ["reconciler"]


@pytest.mark.anyio
async def test_runner_reports_success_and_releases_lock(lock_repo: InMemoryJobLockRepo, audit_repo: InMemoryAuditRepo) -> None:
  runner = JobRunner(JobLockService(lock_repo, owner="runner"), audit=AuditLogger(audit_repo))

  outcome = await runner.run(_job("reconciler", _ok))

  assert outcome.status == "SUCCESS"
  assert outcome.result == "done"
  assert lock_repo.locks == {}
  assert [event["details"]["status"] for event in audit_repo.events] == ["STARTED", "SUCCESS"]


@pytest.mark.anyio
async def test_runner_skips_when_lock_is_held(lock_repo: InMemoryJobLockRepo) -> None:
  calls: list[str] = []

  async def _run() -> None:
    calls.append("ran")

  await JobLockService(lock_repo, owner="other").acquire("reconciler", 60_000)
  outcome = await JobRunner(JobLockService(lock_repo, owner="runner")).run(_job("reconciler", _run))

  assert outcome.status == "SKIPPED"
  assert outcome.reason == "locked"
  assert calls == []
  # The other holder keeps its lock.
  assert lock_repo.locks["reconciler"][0] == "other"


@pytest.mark.anyio
async def test_runner_times_out_and_releases_lock(lock_repo: InMemoryJobLockRepo) -> None:
  async def _slow() -> None:
    await asyncio.sleep(5)

  outcome = await JobRunner(JobLockService(lock_repo, owner="runner")).run(_job("slow", _slow, timeout_ms=20))

  assert outcome.status == "TIMED_OUT"
  assert lock_repo.locks == {}


@pytest.mark.anyio
async def test_runner_captures_failures(lock_repo: InMemoryJobLockRepo) -> None:
  async def _boom() -> None:
    raise RuntimeError("boom")

  outcome = await JobRunner(JobLockService(lock_repo, owner="runner")).run(_job("boom", _boom))

  assert outcome.status == "FAILED"
  assert outcome.error == "RuntimeError: boom"
  assert lock_repo.locks == {}


@pytest.mark.anyio
async def test_scheduler_runs_interval_jobs_until_stopped(lock_repo: InMemoryJobLockRepo) -> None:
  ran = asyncio.Event()
  runs: list[int] = []

  async def _tick() -> None:
    runs.append(1)
    ran.set()

  registry = JobRegistry()
  registry.register_job(_job("tick", _tick, every_sec=60))
  registry.register_job(_job("manual", _tick))
  scheduler = IntervalScheduler(registry, JobRunner(JobLockService(lock_repo, owner="runner")))

  scheduler.start()
  await asyncio.wait_for(ran.wait(), timeout=1)
  assert scheduler.running
  with pytest.raises(RuntimeError):
    scheduler.start()
  await scheduler.stop()

  # Only the interval job ran, once, before the 60s sleep was interrupted.
  assert runs == [1]
  assert not scheduler.running
