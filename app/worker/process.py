"""Long-running leaf worker: heartbeat, claim with bounded concurrency, drain on signal.

How/Why:
- The worker owns only its heartbeat and its own DRAINING/STOPPED reports; the
  orchestrator owns spawn and exit transitions.
- A drain stops new claims immediately. In-flight jobs get the drain timeout to
  finish; anything still running after that is cancelled and left to the
  stale-claim sweep.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket

from app.jobs.worker import HydrationJobProcessor
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 2


class WorkerProcess:
  def __init__(
    self,
    *,
    lifecycle_id: str,
    worker_type: str,
    processor: HydrationJobProcessor,
    lifecycle_repo: WorkerLifecycleRepository,
    heartbeat_ms: int = 10000,
    poll_ms: int = 2000,
    concurrency: int = 2,
    drain_timeout_ms: int = 30000,
  ) -> None:
    self.lifecycle_id = lifecycle_id
    self.worker_type = worker_type
    self._processor = processor
    self._lifecycle = lifecycle_repo
    self._heartbeat_sec = heartbeat_ms / 1000
    self._poll_sec = poll_ms / 1000
    self._concurrency = max(1, concurrency)
    self._drain_timeout_sec = drain_timeout_ms / 1000
    self._draining = asyncio.Event()
    self.processed = 0

  @property
  def draining(self) -> bool:
    return self._draining.is_set()

  def request_drain(self) -> None:
    """Signal-safe: stop claiming new jobs."""
    if not self._draining.is_set():
      logger.info("Worker %s drain requested", self.lifecycle_id)
      self._draining.set()

  async def run(self) -> int:
    heartbeat: asyncio.Task[None] | None = None
    try:
      await self._lifecycle.ensure_registered(self.lifecycle_id, worker_type=self.worker_type, pid=os.getpid(), host=socket.gethostname())
      logger.info("Worker %s (%s) running with concurrency %d", self.lifecycle_id, self.worker_type, self._concurrency)
      heartbeat = asyncio.create_task(self._heartbeat_loop(), name=f"heartbeat:{self.lifecycle_id}")
      consumers = [asyncio.create_task(self._consume(slot), name=f"consumer:{slot}") for slot in range(self._concurrency)]

      await self._draining.wait()
      await self._lifecycle.set_status(self.lifecycle_id, "DRAINING")
      done, pending = await asyncio.wait(consumers, timeout=self._drain_timeout_sec)
      if pending:
        logger.warning("Worker %s drain timed out; cancelling %d in-flight consumers", self.lifecycle_id, len(pending))
        for task in pending:
          task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
      for task in done:
        if not task.cancelled() and task.exception() is not None:
          raise task.exception()  # type: ignore[misc]

      await self._lifecycle.set_status(self.lifecycle_id, "STOPPED")
      logger.info("Worker %s stopped after %d jobs", self.lifecycle_id, self.processed)
      return EXIT_OK
    except Exception:
      logger.exception("Worker %s failed", self.lifecycle_id)
      try:
        await self._lifecycle.set_status(self.lifecycle_id, "FAILED")
      except Exception:  # noqa: BLE001
        logger.warning("Could not record FAILED for worker %s", self.lifecycle_id, exc_info=True)
      return EXIT_FAILED
    finally:
      if heartbeat is not None:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)

  async def _consume(self, slot: int) -> None:
    while not self._draining.is_set():
      try:
        job = await self._processor.process_next()
      except asyncio.CancelledError:
        raise
      except Exception:  # noqa: BLE001
        logger.warning("Consumer %d of worker %s hit an error while claiming", slot, self.lifecycle_id, exc_info=True)
        job = None
      if job is not None:
        self.processed += 1
        continue
      await self._sleep_unless_draining(self._poll_sec)

  async def _heartbeat_loop(self) -> None:
    while True:
      try:
        await self._lifecycle.heartbeat(self.lifecycle_id)
        current = await self._lifecycle.get(self.lifecycle_id)
        # An operator stop without a local orchestrator (k8s mode) only shows up in the row.
        if current is not None and current.status in {"DRAINING", "STOPPED"}:
          self.request_drain()
      except asyncio.CancelledError:
        raise
      except Exception:  # noqa: BLE001
        logger.warning("Heartbeat failed for worker %s", self.lifecycle_id, exc_info=True)
      await asyncio.sleep(self._heartbeat_sec)

  async def _sleep_unless_draining(self, seconds: float) -> None:
    try:
      await asyncio.wait_for(self._draining.wait(), timeout=seconds)
    except TimeoutError:
      pass
