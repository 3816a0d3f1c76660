"""Best-effort audit trail for operator-visible pipeline events."""

from __future__ import annotations

import logging
from typing import Any

from app.storage.postgres_audit_repo import AuditRepository

logger = logging.getLogger(__name__)


class AuditLogger:
  """Write audit events without ever raising into the caller."""

  def __init__(self, repo: AuditRepository | None) -> None:
    self._repo = repo

  async def record(self, event_type: str, details: dict[str, Any] | None = None, *, actor: str | None = None) -> None:
    if self._repo is None:
      logger.debug("Audit disabled; dropping %s", event_type)
      return
    try:
      await self._repo.insert_event(event_type=event_type, details=details, actor=actor)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to write audit event %s", event_type, exc_info=True)
