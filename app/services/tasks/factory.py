from __future__ import annotations

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer
from app.services.tasks.local import LocalHttpEnqueuer


def get_task_enqueuer(settings: Settings) -> TaskEnqueuer:
  """Return the enqueuer for HYDRATION_TASK_PROVIDER; only local-http exists."""
  if settings.task_service_provider != "local-http":
    raise ValueError(f"Unsupported HYDRATION_TASK_PROVIDER: {settings.task_service_provider}")
  return LocalHttpEnqueuer(settings)
