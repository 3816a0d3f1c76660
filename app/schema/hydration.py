from __future__ import annotations

import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class HydrationJob(Base):
  __tablename__ = "hydration_jobs"
  __table_args__ = (
    # One child per (root, level, unit of work); the root itself has no fanout key.
    UniqueConstraint("root_job_id", "hierarchy_level", "fanout_key", name="ux_hydration_jobs_root_level_fanout"),
    Index("ix_hydration_jobs_root_level_status", "root_job_id", "hierarchy_level", "status"),
    Index("ix_hydration_jobs_open_roots", "created_at", postgresql_where=text("hierarchy_level = 0 AND status IN ('pending', 'running')")),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  root_job_id: Mapped[str | None] = mapped_column(ForeignKey("hydration_jobs.id"), nullable=True, index=True)
  parent_job_id: Mapped[str | None] = mapped_column(ForeignKey("hydration_jobs.id"), nullable=True, index=True)
  hierarchy_level: Mapped[int] = mapped_column(Integer, nullable=False)
  job_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  fanout_key: Mapped[str | None] = mapped_column(String, nullable=True)
  subject_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  chapter_id: Mapped[str | None] = mapped_column(String, nullable=True)
  topic_id: Mapped[str | None] = mapped_column(String, nullable=True)
  language: Mapped[str] = mapped_column(String, nullable=False)
  difficulty: Mapped[str | None] = mapped_column(String, nullable=True)
  board: Mapped[str | None] = mapped_column(String, nullable=True)
  grade: Mapped[int | None] = mapped_column(Integer, nullable=True)
  subject_code: Mapped[str | None] = mapped_column(String, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, server_default="pending")
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  locked_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  content_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  input_params: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
  result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  chapters_expected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  chapters_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  topics_expected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  topics_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  notes_expected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  notes_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  questions_expected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  questions_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  estimated_cost_usd: Mapped[float | None] = mapped_column(Numeric(12, 4, asdecimal=False), nullable=True)
  cost_usd: Mapped[float] = mapped_column(Numeric(12, 4, asdecimal=False), nullable=False, default=0)
  estimated_duration_mins: Mapped[int | None] = mapped_column(Integer, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  started_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class HydrationJobEvent(Base):
  __tablename__ = "hydration_job_events"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  job_id: Mapped[str] = mapped_column(ForeignKey("hydration_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
  root_job_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  event_type: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  payload_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class HydrationOutbox(Base):
  __tablename__ = "hydration_outbox"
  __table_args__ = (Index("ix_hydration_outbox_unsent", "created_at", postgresql_where=text("sent_at IS NULL")),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  queue: Mapped[str] = mapped_column(String, nullable=False)
  payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  sent_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
