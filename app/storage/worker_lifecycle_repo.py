"""Storage interfaces for worker lifecycle bookkeeping."""

from __future__ import annotations

from typing import Any, Protocol

from app.jobs.models import WorkerLifecycleRecord, WorkerStatus


class WorkerLifecycleRepository(Protocol):
  """Repository contract for worker lifecycle rows.

  The orchestrator owns spawn and exit transitions; the worker process owns
  heartbeats and its own drain acknowledgements.
  """

  async def create(self, *, worker_type: str, status: WorkerStatus = "STARTING", meta: dict[str, Any] | None = None, lifecycle_id: str | None = None) -> WorkerLifecycleRecord:
    """Insert a lifecycle row."""

  async def get(self, lifecycle_id: str) -> WorkerLifecycleRecord | None:
    """Fetch one lifecycle row."""

  async def list_by_status(self, status: WorkerStatus) -> list[WorkerLifecycleRecord]:
    """List rows in one status, oldest first."""

  async def list_recent(self, *, limit: int = 100) -> list[WorkerLifecycleRecord]:
    """List the newest rows."""

  async def count_by_status(self) -> dict[str, int]:
    """Return row counts grouped by status."""

  async def mark_running(self, lifecycle_id: str, *, pid: int | None, host: str | None, meta: dict[str, Any] | None = None) -> None:
    """Record a spawned process and flip the row to RUNNING."""

  async def mark_exited(self, lifecycle_id: str, *, status: WorkerStatus, meta: dict[str, Any] | None = None) -> None:
    """Record a process exit as STOPPED or FAILED."""

  async def ensure_registered(self, lifecycle_id: str, *, worker_type: str, pid: int, host: str) -> WorkerLifecycleRecord:
    """Create or refresh the row a worker process runs under and mark it RUNNING."""

  async def heartbeat(self, lifecycle_id: str) -> None:
    """Stamp lastHeartbeatAt."""

  async def set_status(self, lifecycle_id: str, status: WorkerStatus) -> None:
    """Set a status reported by the worker itself or an operator."""
