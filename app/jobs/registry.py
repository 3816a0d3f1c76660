"""Explicit registry of named, lock-guarded maintenance jobs."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

JobRun = Callable[[], Awaitable[object]]


@dataclass(frozen=True)
class JobSchedule:
  """Interval schedule. every_sec=None leaves invocation to an external cron caller."""

  every_sec: float | None = None

  @property
  def is_interval(self) -> bool:
    return self.every_sec is not None


@dataclass(frozen=True)
class JobDefinition:
  """A named job, the lock that guards it and how long one run may take."""

  name: str
  lock_key: str
  timeout_ms: int
  schedule: JobSchedule
  run: JobRun


class DuplicateJobError(ValueError):
  """Raised when two jobs are registered under one name."""


class JobRegistry:
  """In-memory table of job definitions, built once per process and passed around."""

  def __init__(self) -> None:
    self._jobs: dict[str, JobDefinition] = {}

  def register_job(self, definition: JobDefinition) -> JobDefinition:
    """Add a job. Registration has no side effects beyond the table."""
    if definition.name in self._jobs:
      raise DuplicateJobError(f"Job already registered: {definition.name}")
    if definition.timeout_ms <= 0:
      raise ValueError(f"Job {definition.name} needs a positive timeout.")
    if definition.schedule.every_sec is not None and definition.schedule.every_sec <= 0:
      raise ValueError(f"Job {definition.name} needs a positive interval.")
    self._jobs[definition.name] = definition
    return definition

  def get(self, name: str) -> JobDefinition | None:
    return self._jobs.get(name)

  def list_jobs(self) -> list[JobDefinition]:
    return list(self._jobs.values())

  def interval_jobs(self) -> list[JobDefinition]:
    return [job for job in self._jobs.values() if job.schedule.is_interval]

  def __contains__(self, name: object) -> bool:
    return name in self._jobs

  def __len__(self) -> int:
    return len(self._jobs)
