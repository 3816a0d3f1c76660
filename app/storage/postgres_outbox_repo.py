"""Postgres-backed repository for outbox rows using SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.schema.hydration import HydrationOutbox
from app.storage.outbox_repo import OutboxMessage, OutboxRepository


class PostgresOutboxRepository(OutboxRepository):
  """Read and acknowledge outbox rows in Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = require_session_factory(session_factory)

  async def list_unsent(self, *, limit: int) -> list[OutboxMessage]:
    async with self._session_factory() as session:
      stmt = select(HydrationOutbox).where(HydrationOutbox.sent_at.is_(None)).order_by(HydrationOutbox.created_at.asc(), HydrationOutbox.id.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [OutboxMessage(id=row.id, queue=row.queue, payload=dict(row.payload_json or {}), attempts=row.attempts, created_at=row.created_at, sent_at=row.sent_at) for row in rows]

  async def mark_sent(self, message_id: int) -> None:
    async with self._session_factory() as session:
      await session.execute(update(HydrationOutbox).where(HydrationOutbox.id == message_id).values(sent_at=datetime.now(UTC), attempts=HydrationOutbox.attempts + 1, last_error=None))
      await session.commit()

  async def mark_failed(self, message_id: int, *, error: str) -> None:
    async with self._session_factory() as session:
      await session.execute(update(HydrationOutbox).where(HydrationOutbox.id == message_id).values(attempts=HydrationOutbox.attempts + 1, last_error=error[:2000]))
      await session.commit()
