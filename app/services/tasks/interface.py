from __future__ import annotations

from typing import Protocol


class TaskEnqueuer(Protocol):
  """Interface for delivering hydration job messages to the task queue."""

  async def enqueue(self, job_id: str, job_type: str) -> None:
    """Deliver one job message."""
    ...
