"""Local-mode worker supervisor.

How/Why:
- The map of tracked child processes is owned by one actor. Poll ticks and
  process exits arrive as messages on a single inbox and are handled one at a
  time, so spawn, drain and exit bookkeeping never interleave.
- Exit code 0 maps to STOPPED; any other code, or death by signal, maps to
  FAILED with the code and signal kept in the row's meta.
- Bookkeeping errors are logged and the loop keeps going; a row may stay stale
  until an operator looks at it.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import socket
import sys
from dataclasses import dataclass
from typing import Protocol

from app.jobs.models import WorkerStatus
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository
from app.telemetry import metrics
from app.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
  """The subset of asyncio.subprocess.Process the supervisor needs."""

  pid: int
  returncode: int | None

  async def wait(self) -> int: ...

  def send_signal(self, sig: int) -> None: ...


class ProcessLauncher(Protocol):
  async def spawn(self, *, worker_type: str, lifecycle_id: str) -> ProcessHandle: ...


class SubprocessLauncher:
  """Start `python -m app.worker` as a child of the orchestrator."""

  def __init__(self, python: str | None = None) -> None:
    self._python = python or sys.executable

  async def spawn(self, *, worker_type: str, lifecycle_id: str) -> ProcessHandle:
    return await asyncio.create_subprocess_exec(self._python, "-m", "app.worker", "--type", worker_type, "--lifecycleId", lifecycle_id)


@dataclass(frozen=True)
class PollTick:
  """Look for STARTING rows to spawn and DRAINING rows to signal."""


@dataclass(frozen=True)
class WorkerExited:
  lifecycle_id: str
  returncode: int


SupervisorMessage = PollTick | WorkerExited


@dataclass
class TrackedWorker:
  lifecycle_id: str
  worker_type: str
  handle: ProcessHandle
  drain_signalled: bool = False


def exit_status(returncode: int) -> tuple[WorkerStatus, dict[str, object]]:
  """Map a process return code to a lifecycle status and exit metadata."""
  if returncode == 0:
    return "STOPPED", {"code": 0, "signal": None}
  if returncode < 0:
    # asyncio reports death by signal N as -N.
    try:
      signal_name: str | None = signal.Signals(-returncode).name
    except ValueError:
      signal_name = str(-returncode)
    return "FAILED", {"code": None, "signal": signal_name}
  return "FAILED", {"code": returncode, "signal": None}


class LocalSupervisor:
  """Actor owning the tracked-process map for local subprocess mode."""

  def __init__(self, repo: WorkerLifecycleRepository, launcher: ProcessLauncher, *, audit: AuditLogger | None = None, host: str | None = None) -> None:
    self._repo = repo
    self._launcher = launcher
    self._audit = audit or AuditLogger(None)
    self._host = host or socket.gethostname()
    self._inbox: asyncio.Queue[SupervisorMessage] = asyncio.Queue()
    self._tracked: dict[str, TrackedWorker] = {}
    self._watchers: set[asyncio.Task[None]] = set()

  @property
  def tracked_ids(self) -> set[str]:
    return set(self._tracked)

  def post(self, message: SupervisorMessage) -> None:
    self._inbox.put_nowait(message)

  async def run(self) -> None:
    """Process inbox messages until cancelled."""
    while True:
      message = await self._inbox.get()
      try:
        await self.handle(message)
      finally:
        self._inbox.task_done()

  async def drain_inbox(self) -> int:
    """Handle every queued message now; returns how many were handled."""
    handled = 0
    while not self._inbox.empty():
      message = self._inbox.get_nowait()
      try:
        await self.handle(message)
      finally:
        self._inbox.task_done()
      handled += 1
    return handled

  async def handle(self, message: SupervisorMessage) -> None:
    try:
      if isinstance(message, PollTick):
        await self._spawn_starting()
        await self._signal_draining()
      elif isinstance(message, WorkerExited):
        await self._on_exit(message)
    except asyncio.CancelledError:
      raise
    except Exception:  # noqa: BLE001
      logger.error("Supervisor failed to handle %s", type(message).__name__, exc_info=True)

  async def shutdown(self, *, timeout: float) -> None:
    """Ask every tracked child to drain and wait for their exits."""
    for tracked in list(self._tracked.values()):
      self._send_interrupt(tracked)
    if self._watchers:
      await asyncio.wait(set(self._watchers), timeout=timeout)
    await self.drain_inbox()
    for tracked in list(self._tracked.values()):
      logger.warning("Worker %s (pid %s) still running at shutdown", tracked.lifecycle_id, tracked.handle.pid)

  async def _spawn_starting(self) -> None:
    rows = await self._repo.list_by_status("STARTING")
    for row in rows:
      if row.id in self._tracked:
        continue
      try:
        handle = await self._launcher.spawn(worker_type=row.type, lifecycle_id=row.id)
      except Exception as exc:  # noqa: BLE001
        logger.error("Failed to spawn worker %s", row.id, exc_info=True)
        await self._record_exit(row.id, "FAILED", {"error": f"spawn failed: {type(exc).__name__}: {exc}"})
        await self._audit.record("WORKER_FAILED", {"lifecycleId": row.id, "type": row.type, "error": str(exc)})
        continue

      self._tracked[row.id] = TrackedWorker(lifecycle_id=row.id, worker_type=row.type, handle=handle)
      self._watch(row.id, handle)
      metrics.record_spawn("local")
      logger.info("Spawned %s worker %s as pid %s", row.type, row.id, handle.pid)
      try:
        await self._repo.mark_running(row.id, pid=handle.pid, host=self._host)
      except Exception:  # noqa: BLE001
        logger.error("Spawned worker %s but could not mark it RUNNING", row.id, exc_info=True)
      await self._audit.record("WORKER_SPAWN", {"lifecycleId": row.id, "type": row.type, "pid": handle.pid, "host": self._host})

  async def _signal_draining(self) -> None:
    rows = await self._repo.list_by_status("DRAINING")
    for row in rows:
      tracked = self._tracked.get(row.id)
      if tracked is None or tracked.drain_signalled:
        continue
      self._send_interrupt(tracked)

  def _send_interrupt(self, tracked: TrackedWorker) -> None:
    if tracked.drain_signalled:
      return
    try:
      tracked.handle.send_signal(signal.SIGINT)
      logger.info("Sent SIGINT to worker %s (pid %s)", tracked.lifecycle_id, tracked.handle.pid)
    except ProcessLookupError:
      logger.info("Worker %s already exited before the drain signal", tracked.lifecycle_id)
    tracked.drain_signalled = True

  def _watch(self, lifecycle_id: str, handle: ProcessHandle) -> None:
    async def _wait_for_exit() -> None:
      returncode = await handle.wait()
      self.post(WorkerExited(lifecycle_id=lifecycle_id, returncode=returncode))

    task = asyncio.create_task(_wait_for_exit(), name=f"watch:{lifecycle_id}")
    self._watchers.add(task)
    task.add_done_callback(self._watchers.discard)

  async def _on_exit(self, message: WorkerExited) -> None:
    tracked = self._tracked.pop(message.lifecycle_id, None)
    if tracked is None:
      logger.warning("Exit for untracked worker %s ignored", message.lifecycle_id)
      return
    status, meta = exit_status(message.returncode)
    logger.info("Worker %s exited with %s -> %s", message.lifecycle_id, message.returncode, status)
    await self._record_exit(message.lifecycle_id, status, meta)
    event_type = "WORKER_EXIT" if status == "STOPPED" else "WORKER_FAILED"
    await self._audit.record(event_type, {"lifecycleId": message.lifecycle_id, "type": tracked.worker_type, "pid": tracked.handle.pid, **meta})

  async def _record_exit(self, lifecycle_id: str, status: WorkerStatus, meta: dict[str, object]) -> None:
    try:
      await self._repo.mark_exited(lifecycle_id, status=status, meta=meta)
    except Exception:  # noqa: BLE001
      logger.error("Could not record %s for worker %s", status, lifecycle_id, exc_info=True)
