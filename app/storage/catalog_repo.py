"""Storage interfaces for the subject/chapter/topic content catalog."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class SubjectRecord:
  id: str
  board_code: str
  grade: int
  code: str
  name: str


@dataclass(frozen=True)
class ChapterRecord:
  id: str
  subject_id: str
  title: str
  order_index: int


@dataclass(frozen=True)
class TopicRecord:
  id: str
  chapter_id: str
  title: str
  order_index: int


def slugify(value: str) -> str:
  """Return a lowercase, dash separated slug used as a natural key."""
  slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
  return slug or "untitled"


class CatalogRepository(Protocol):
  """Repository contract for the content catalog the pipeline fills in."""

  async def find_or_create_subject(self, *, board_code: str, grade: int, code: str, name: str | None = None) -> SubjectRecord:
    """Return the subject for (board, grade, code), creating it when missing."""

  async def upsert_chapter(self, *, subject_id: str, title: str, order_index: int) -> ChapterRecord:
    """Insert or update a chapter keyed by its slug."""

  async def upsert_topic(self, *, chapter_id: str, title: str, order_index: int) -> TopicRecord:
    """Insert or update a topic keyed by its slug."""

  async def save_topic_notes(self, topic_id: str, notes_markdown: str) -> None:
    """Store generated notes on a topic."""
