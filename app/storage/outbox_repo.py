"""Storage interfaces for the transactional outbox."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class OutboxMessage:
  """One queue message written alongside the job row it announces."""

  id: int
  queue: str
  payload: dict[str, Any]
  attempts: int
  created_at: datetime | None = None
  sent_at: datetime | None = None


class OutboxRepository(Protocol):
  """Repository contract for outbox dispatch."""

  async def list_unsent(self, *, limit: int) -> list[OutboxMessage]:
    """Return the oldest unsent messages."""

  async def mark_sent(self, message_id: int) -> None:
    """Stamp sentAt and count the delivery attempt."""

  async def mark_failed(self, message_id: int, *, error: str) -> None:
    """Count a failed delivery attempt without marking the row sent."""
