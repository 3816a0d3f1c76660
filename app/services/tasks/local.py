"""`local-http` task provider: delivers outbox messages to the admin API's task endpoint."""

from __future__ import annotations

import logging
from urllib.parse import urlsplit

import httpx

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)

TASK_PATH = "/internal/tasks/hydration-job"
DELIVERY_TIMEOUT_SECONDS = 30.0
_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})


class LocalHttpEnqueuer(TaskEnqueuer):
  """POSTs `{job_id, job_type}` with the shared task secret.

  A loopback queue URL is served in-process through ASGITransport so a
  single-machine setup needs no second HTTP server.
  """

  def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self.settings = settings
    self._transport = transport

  def _endpoint(self) -> str:
    queue_url = self.settings.queue_url
    if not queue_url:
      raise RuntimeError("HYDRATION_QUEUE_URL is not configured; cannot deliver outbox messages.")
    if urlsplit(queue_url).scheme not in {"http", "https"}:
      raise RuntimeError(f"The local-http provider needs an http(s) HYDRATION_QUEUE_URL, got {urlsplit(queue_url).scheme!r}.")
    if not self.settings.task_secret:
      raise RuntimeError("HYDRATION_TASK_SECRET is not configured; the task endpoint would reject deliveries.")
    return queue_url.rstrip("/") + TASK_PATH

  def _transport_for(self, endpoint: str) -> httpx.AsyncBaseTransport | None:
    if self._transport is not None:
      return self._transport
    if (urlsplit(endpoint).hostname or "").lower() in _LOOPBACK_HOSTS:
      from app.main import app

      return httpx.ASGITransport(app=app)
    return None

  async def enqueue(self, job_id: str, job_type: str) -> None:
    endpoint = self._endpoint()
    # Internal delivery never goes through environment proxies.
    async with httpx.AsyncClient(transport=self._transport_for(endpoint), trust_env=False, timeout=DELIVERY_TIMEOUT_SECONDS) as client:
      try:
        response = await client.post(endpoint, json={"job_id": job_id, "job_type": job_type}, headers={"authorization": f"Bearer {self.settings.task_secret}"})
        response.raise_for_status()
      except httpx.HTTPStatusError as exc:
        logger.error("Task endpoint answered %s for %s job %s: %s", exc.response.status_code, job_type, job_id, exc.response.text[:300])
        raise
      except httpx.RequestError as exc:
        logger.error("Could not deliver %s job %s to %s: %s", job_type, job_id, endpoint, exc)
        raise
    logger.debug("Delivered %s job %s", job_type, job_id)
