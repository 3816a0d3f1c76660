from __future__ import annotations

import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Subject(Base):
  __tablename__ = "subjects"
  __table_args__ = (UniqueConstraint("board_code", "grade", "code", name="ux_subjects_board_grade_code"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  board_code: Mapped[str] = mapped_column(String, nullable=False)
  grade: Mapped[int] = mapped_column(Integer, nullable=False)
  code: Mapped[str] = mapped_column(String, nullable=False)
  slug: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str] = mapped_column(String, nullable=False)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Chapter(Base):
  __tablename__ = "chapters"
  __table_args__ = (UniqueConstraint("subject_id", "slug", name="ux_chapters_subject_slug"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  subject_id: Mapped[str] = mapped_column(ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False, index=True)
  slug: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Topic(Base):
  __tablename__ = "topics"
  __table_args__ = (UniqueConstraint("chapter_id", "slug", name="ux_topics_chapter_slug"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  chapter_id: Mapped[str] = mapped_column(ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
  slug: Mapped[str] = mapped_column(String, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  notes_markdown: Mapped[str | None] = mapped_column(Text, nullable=True)
