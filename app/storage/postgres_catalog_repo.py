"""Postgres-backed repository for the content catalog using SQLAlchemy."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.schema.catalog import Chapter, Subject, Topic
from app.storage.catalog_repo import CatalogRepository, ChapterRecord, SubjectRecord, TopicRecord, slugify
from app.utils.ids import generate_job_id


class PostgresCatalogRepository(CatalogRepository):
  """Persist subjects, chapters and topics to Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = require_session_factory(session_factory)

  async def find_or_create_subject(self, *, board_code: str, grade: int, code: str, name: str | None = None) -> SubjectRecord:
    stmt = select(Subject).where(Subject.board_code == board_code, Subject.grade == grade, Subject.code == code).limit(1)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is not None:
        return _subject_record(row)
      row = Subject(id=generate_job_id(), board_code=board_code, grade=grade, code=code, slug=slugify(code), name=name or code)
      session.add(row)
      try:
        await session.commit()
      except IntegrityError:
        # A concurrent submission created the same subject first.
        await session.rollback()
        row = (await session.execute(stmt)).scalar_one()
      return _subject_record(row)

  async def upsert_chapter(self, *, subject_id: str, title: str, order_index: int) -> ChapterRecord:
    async with self._session_factory() as session:
      stmt = (
        insert(Chapter)
        .values(id=generate_job_id(), subject_id=subject_id, slug=slugify(title), title=title, order_index=order_index)
        .on_conflict_do_update(constraint="ux_chapters_subject_slug", set_={"title": title, "order_index": order_index})
        .returning(Chapter)
      )
      row = (await session.execute(stmt)).scalar_one()
      await session.commit()
      return ChapterRecord(id=row.id, subject_id=row.subject_id, title=row.title, order_index=row.order_index)

  async def upsert_topic(self, *, chapter_id: str, title: str, order_index: int) -> TopicRecord:
    async with self._session_factory() as session:
      stmt = (
        insert(Topic)
        .values(id=generate_job_id(), chapter_id=chapter_id, slug=slugify(title), title=title, order_index=order_index)
        .on_conflict_do_update(constraint="ux_topics_chapter_slug", set_={"title": title, "order_index": order_index})
        .returning(Topic)
      )
      row = (await session.execute(stmt)).scalar_one()
      await session.commit()
      return TopicRecord(id=row.id, chapter_id=row.chapter_id, title=row.title, order_index=row.order_index)

  async def save_topic_notes(self, topic_id: str, notes_markdown: str) -> None:
    async with self._session_factory() as session:
      await session.execute(update(Topic).where(Topic.id == topic_id).values(notes_markdown=notes_markdown))
      await session.commit()


def _subject_record(row: Subject) -> SubjectRecord:
  return SubjectRecord(id=row.id, board_code=row.board_code, grade=row.grade, code=row.code, name=row.name)
