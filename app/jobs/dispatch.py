"""Dependency-injected handlers for leaf hydration jobs, keyed by job type."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from app.jobs.models import HydrationJobRecord
from app.services.content_generator import ContentGeneratorClient, GenerationScope
from app.storage.catalog_repo import CatalogRepository


@dataclass(frozen=True)
class HandlerOutput:
  """What a handler produced; stored on the job row when it completes."""

  result_json: dict[str, Any] = field(default_factory=dict)
  cost_usd: float = 0.0


class JobProcessorHandler(Protocol):
  """Processor contract for one job type."""

  async def process(self, job: HydrationJobRecord) -> HandlerOutput:
    """Generate and persist content for one claimed job."""


class JobProcessorRegistry:
  """Registry mapping job types to processor handlers."""

  def __init__(self, handlers: dict[str, JobProcessorHandler]) -> None:
    self._handlers = handlers

  def resolve(self, job_type: str) -> JobProcessorHandler:
    """Resolve the processor for a job type."""
    handler = self._handlers.get(job_type)
    if handler is None:
      raise ValueError(f"Unsupported job type: {job_type}")
    return handler

  def job_types(self) -> tuple[str, ...]:
    return tuple(self._handlers)


def scope_for(job: HydrationJobRecord, *, count: int | None = None) -> GenerationScope:
  return GenerationScope(
    job_type=job.job_type,
    language=job.language,
    subject_id=job.subject_id,
    subject_code=job.subject_code,
    board=job.board,
    grade=job.grade,
    chapter_id=job.chapter_id,
    topic_id=job.topic_id,
    difficulty=job.difficulty,
    count=count,
  )


class SyllabusHandler:
  """Level 1: produce the chapter and topic outline of a subject."""

  def __init__(self, catalog: CatalogRepository, generator: ContentGeneratorClient) -> None:
    self._catalog = catalog
    self._generator = generator

  async def process(self, job: HydrationJobRecord) -> HandlerOutput:
    if not job.subject_id:
      raise ValueError(f"Syllabus job {job.id} has no subject.")
    result = await self._generator.generate(scope_for(job))
    # The outline records exactly what this job produced; the reconciler plans level 2 from it.
    produced: list[dict[str, Any]] = []
    for chapter_index, outline in enumerate(result.chapters):
      chapter = await self._catalog.upsert_chapter(subject_id=job.subject_id, title=outline.title, order_index=chapter_index)
      topic_ids = [(await self._catalog.upsert_topic(chapter_id=chapter.id, title=topic.title, order_index=topic_index)).id for topic_index, topic in enumerate(outline.topics)]
      produced.append({"chapterId": chapter.id, "topicIds": topic_ids})
    topic_count = sum(len(entry["topicIds"]) for entry in produced)
    return HandlerOutput(result_json={"chapters": len(produced), "topics": topic_count, "outline": produced}, cost_usd=result.cost_usd)


class TopicExpandHandler:
  """Level 2: expand the topic list of one chapter."""

  def __init__(self, catalog: CatalogRepository, generator: ContentGeneratorClient) -> None:
    self._catalog = catalog
    self._generator = generator

  async def process(self, job: HydrationJobRecord) -> HandlerOutput:
    if not job.chapter_id:
      raise ValueError(f"Topic expansion job {job.id} has no chapter.")
    result = await self._generator.generate(scope_for(job))
    topic_ids = [(await self._catalog.upsert_topic(chapter_id=job.chapter_id, title=topic.title, order_index=topic_index)).id for topic_index, topic in enumerate(result.topics)]
    return HandlerOutput(result_json={"topics": len(topic_ids), "topicIds": topic_ids}, cost_usd=result.cost_usd)


class NoteHandler:
  """Level 3: write study notes for one topic."""

  def __init__(self, catalog: CatalogRepository, generator: ContentGeneratorClient) -> None:
    self._catalog = catalog
    self._generator = generator

  async def process(self, job: HydrationJobRecord) -> HandlerOutput:
    if not job.topic_id:
      raise ValueError(f"Note job {job.id} has no topic.")
    result = await self._generator.generate(scope_for(job))
    if not result.markdown:
      raise ValueError(f"Content generator returned no notes for topic {job.topic_id}.")
    await self._catalog.save_topic_notes(job.topic_id, result.markdown)
    return HandlerOutput(result_json={"noteChars": len(result.markdown)}, cost_usd=result.cost_usd)


class QuestionHandler:
  """Level 4: generate questions for one (topic, difficulty) pair."""

  def __init__(self, generator: ContentGeneratorClient) -> None:
    self._generator = generator

  async def process(self, job: HydrationJobRecord) -> HandlerOutput:
    if not job.topic_id or not job.difficulty:
      raise ValueError(f"Question job {job.id} needs a topic and a difficulty.")
    count = job.options.questions_per_difficulty
    result = await self._generator.generate(scope_for(job, count=count))
    if not result.questions:
      raise ValueError(f"Content generator returned no questions for topic {job.topic_id} ({job.difficulty}).")
    return HandlerOutput(result_json={"questions": result.questions}, cost_usd=result.cost_usd)


def build_default_registry(catalog: CatalogRepository, generator: ContentGeneratorClient) -> JobProcessorRegistry:
  return JobProcessorRegistry(
    {
      "syllabus": SyllabusHandler(catalog, generator),
      "topic_expand": TopicExpandHandler(catalog, generator),
      "note_gen": NoteHandler(catalog, generator),
      "question_gen": QuestionHandler(generator),
    }
  )
