from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class WorkerLifecycle(Base):
  __tablename__ = "worker_lifecycles"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  host: Mapped[str | None] = mapped_column(String, nullable=True)
  pid: Mapped[int | None] = mapped_column(Integer, nullable=True)
  meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, index=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  started_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  last_heartbeat_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  stopped_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class JobLock(Base):
  __tablename__ = "job_locks"

  name: Mapped[str] = mapped_column(String, primary_key=True)
  owner: Mapped[str] = mapped_column(String, nullable=False)
  acquired_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  expires_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
