"""Postgres-backed repository for operator audit events using SQLAlchemy."""

from __future__ import annotations

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.schema.audit import AuditLog


class AuditRepository(Protocol):
  """Repository contract for audit events."""

  async def insert_event(self, *, event_type: str, details: dict[str, Any] | None = None, actor: str | None = None) -> None:
    """Persist one audit event."""


class PostgresAuditRepository(AuditRepository):
  """Persist audit events into Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = require_session_factory(session_factory)

  async def insert_event(self, *, event_type: str, details: dict[str, Any] | None = None, actor: str | None = None) -> None:
    async with self._session_factory() as session:
      session.add(AuditLog(event_type=event_type, actor=actor, details=details))
      await session.commit()
