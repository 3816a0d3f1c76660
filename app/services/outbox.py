"""Outbox dispatcher: delivers job messages written in the same transaction as their rows."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from app.services.tasks.interface import TaskEnqueuer
from app.storage.outbox_repo import OutboxMessage, OutboxRepository

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
  sent: int = 0
  failed: int = 0
  dropped: int = 0


class OutboxDispatcher:
  """Deliver unsent outbox rows, oldest first, at least once."""

  def __init__(self, repo: OutboxRepository, enqueuer: TaskEnqueuer, *, batch_size: int = 10) -> None:
    self._repo = repo
    self._enqueuer = enqueuer
    self._batch_size = batch_size

  async def dispatch_batch(self) -> DispatchReport:
    report = DispatchReport()
    messages = await self._repo.list_unsent(limit=self._batch_size)
    for message in messages:
      job_id, job_type = _parse(message)
      if job_id is None or job_type is None:
        # Nothing could ever consume it; retire the row instead of retrying forever.
        logger.warning("Dropping malformed outbox message %s: %s", message.id, message.payload)
        await self._repo.mark_sent(message.id)
        report.dropped += 1
        continue
      try:
        await self._enqueuer.enqueue(job_id, job_type)
      except asyncio.CancelledError:
        raise
      except Exception as exc:  # noqa: BLE001
        logger.warning("Outbox message %s (job %s) failed on attempt %d: %s", message.id, job_id, message.attempts + 1, exc)
        await self._repo.mark_failed(message.id, error=f"{type(exc).__name__}: {exc}")
        report.failed += 1
        continue
      await self._repo.mark_sent(message.id)
      report.sent += 1
    if messages:
      logger.info("Outbox batch: sent=%d failed=%d dropped=%d", report.sent, report.failed, report.dropped)
    return report


def _parse(message: OutboxMessage) -> tuple[str | None, str | None]:
  message_type = message.payload.get("type")
  body = message.payload.get("payload") or {}
  job_id = body.get("jobId") if isinstance(body, dict) else None
  if not message_type or not job_id:
    return None, None
  return str(job_id), str(message_type).lower()
