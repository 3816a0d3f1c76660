"""Interval scheduler that drives registered jobs from one event loop."""

from __future__ import annotations

import asyncio
import logging

from app.jobs.registry import JobDefinition, JobRegistry
from app.jobs.runner import JobRunner

logger = logging.getLogger(__name__)


class IntervalScheduler:
  """Start one asyncio task per interval job; each task runs, then sleeps."""

  def __init__(self, registry: JobRegistry, runner: JobRunner) -> None:
    self._registry = registry
    self._runner = runner
    self._tasks: list[asyncio.Task[None]] = []
    self._stopping = asyncio.Event()

  @property
  def running(self) -> bool:
    return any(not task.done() for task in self._tasks)

  def start(self) -> None:
    if self._tasks:
      raise RuntimeError("Scheduler already started.")
    self._stopping.clear()
    for job in self._registry.interval_jobs():
      self._tasks.append(asyncio.create_task(self._loop(job), name=f"scheduler:{job.name}"))
    logger.info("Scheduler started with %d interval jobs", len(self._tasks))

  async def stop(self) -> None:
    self._stopping.set()
    for task in self._tasks:
      task.cancel()
    await asyncio.gather(*self._tasks, return_exceptions=True)
    self._tasks = []
    logger.info("Scheduler stopped")

  async def _loop(self, job: JobDefinition) -> None:
    interval = float(job.schedule.every_sec or 0)
    while not self._stopping.is_set():
      # The runner never raises, so one bad tick cannot kill the loop.
      await self._runner.run(job)
      try:
        await asyncio.wait_for(self._stopping.wait(), timeout=interval)
      except TimeoutError:
        continue
