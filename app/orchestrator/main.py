"""Orchestrator process: scheduler, health server and the worker supervision loop.

How/Why:
- Local mode posts a PollTick to the supervisor actor every poll interval.
- k8s mode ticks only while this replica holds the advisory leader lock;
  followers keep retrying the non-blocking try-acquire each interval.
- Scheduled jobs run in both modes; their own job locks prevent overlap
  across replicas.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from app.config import Settings
from app.jobs.definitions import JobRuntime
from app.jobs.scheduler import IntervalScheduler
from app.orchestrator.health import EmbeddedServer
from app.orchestrator.k8s import KubernetesReconciler
from app.orchestrator.leader import AdvisoryLeaderLock
from app.orchestrator.status_file import StatusFileWriter
from app.orchestrator.supervisor import LocalSupervisor, PollTick

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
MIN_STATUS_INTERVAL_SEC = 2.0


@dataclass
class LocalMode:
  supervisor: LocalSupervisor


@dataclass
class KubernetesMode:
  reconciler: KubernetesReconciler
  leader: AdvisoryLeaderLock


class Orchestrator:
  def __init__(self, *, settings: Settings, mode: LocalMode | KubernetesMode, status_writer: StatusFileWriter, runtime: JobRuntime | None = None, health_server: EmbeddedServer | None = None) -> None:
    self._settings = settings
    self._mode = mode
    self._status = status_writer
    self._runtime = runtime
    self._health = health_server
    self._poll_sec = settings.orchestrator_poll_ms / 1000
    self._stop = asyncio.Event()

  @property
  def mode_name(self) -> str:
    return "k8s" if isinstance(self._mode, KubernetesMode) else "local"

  def request_stop(self) -> None:
    if not self._stop.is_set():
      logger.info("Orchestrator stop requested")
      self._stop.set()

  async def run(self) -> int:
    background: list[asyncio.Task[None]] = []
    scheduler = IntervalScheduler(self._runtime.registry, self._runtime.runner) if self._runtime is not None else None
    if scheduler is not None:
      scheduler.start()
    if self._health is not None:
      background.append(asyncio.create_task(self._health.serve(), name="health-server"))
    background.append(asyncio.create_task(self._status_loop(), name="status-file"))
    if isinstance(self._mode, LocalMode):
      background.append(asyncio.create_task(self._mode.supervisor.run(), name="supervisor"))

    logger.info("Orchestrator running in %s mode (poll %.1fs)", self.mode_name, self._poll_sec)
    try:
      while not self._stop.is_set():
        await self.tick()
        await self._sleep(self._poll_sec)
    finally:
      await self._shutdown(scheduler, background)
    return EXIT_OK

  async def tick(self) -> None:
    """One supervision step; errors are logged and the loop continues."""
    try:
      if isinstance(self._mode, LocalMode):
        self._mode.supervisor.post(PollTick())
        return
      if await self._mode.leader.try_acquire():
        await self._mode.reconciler.tick()
    except asyncio.CancelledError:
      raise
    except Exception:  # noqa: BLE001
      logger.error("Orchestrator tick failed", exc_info=True)

  async def _status_loop(self) -> None:
    interval = max(MIN_STATUS_INTERVAL_SEC, self._poll_sec)
    while True:
      self._status.write()
      await asyncio.sleep(interval)

  async def _sleep(self, seconds: float) -> None:
    try:
      await asyncio.wait_for(self._stop.wait(), timeout=seconds)
    except TimeoutError:
      pass

  async def _shutdown(self, scheduler: IntervalScheduler | None, background: list[asyncio.Task[None]]) -> None:
    if scheduler is not None:
      await scheduler.stop()
    if isinstance(self._mode, LocalMode):
      # Stop the actor loop first so shutdown handles the remaining messages alone.
      for task in background:
        if task.get_name() == "supervisor":
          task.cancel()
          await asyncio.gather(task, return_exceptions=True)
      await self._mode.supervisor.shutdown(timeout=self._settings.worker_drain_timeout_ms / 1000)
    else:
      await self._mode.leader.release()
    if self._health is not None:
      self._health.should_exit = True
    for task in background:
      if task.get_name() != "health-server":
        task.cancel()
    await asyncio.gather(*background, return_exceptions=True)
    logger.info("Orchestrator stopped")


def install_signal_handlers(orchestrator: Orchestrator) -> None:
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, orchestrator.request_stop)
