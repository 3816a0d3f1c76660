from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.jobs.dispatch import HandlerOutput, JobProcessorRegistry, build_default_registry
from app.jobs.models import ChildJobSpec, HydrationJobRecord, HydrationOptions
from app.jobs.worker import HydrationJobProcessor, handle_hydration_task
from app.services.content_generator import ChapterOutline, GenerationResult, TopicOutline
from tests.fakes import FakeContentGenerator, InMemoryCatalogRepo, InMemoryHydrationJobsRepo


def _root(subject_id: str = "sub-1") -> HydrationJobRecord:
  return HydrationJobRecord(
    id="root-1",
    hierarchy_level=0,
    job_type="hydrate_all",
    language="en",
    subject_id=subject_id,
    board="CBSE",
    grade=10,
    subject_code="MATH",
    input_params={"options": HydrationOptions(difficulties=("easy",), questions_per_difficulty=3).to_json()},
  )


async def _add_child(jobs_repo: InMemoryHydrationJobsRepo, **fields: object) -> HydrationJobRecord:
  root = jobs_repo.jobs.get("root-1") or await jobs_repo.create_root_job(_root(), queue="content-hydration")
  created = await jobs_repo.insert_children_if_absent(root=root, specs=[ChildJobSpec(parent_job_id=root.id, **fields)], queue="content-hydration")  # type: ignore[arg-type]
  return created[0]


def _generator() -> FakeContentGenerator:
  return FakeContentGenerator(
    {
      "syllabus": lambda scope: GenerationResult(chapters=[ChapterOutline(title="Algebra", topics=[TopicOutline(title="Linear"), TopicOutline(title="Quadratic")])], cost_usd=0.1),
      "topic_expand": lambda scope: GenerationResult(topics=[TopicOutline(title="Linear"), TopicOutline(title="Inequalities")], cost_usd=0.05),
      "note_gen": lambda scope: GenerationResult(markdown="# Notes", cost_usd=0.2),
      "question_gen": lambda scope: GenerationResult(questions=[{"q": index} for index in range(scope.count or 0)], cost_usd=0.3),
    }
  )


@pytest.mark.anyio
async def test_syllabus_job_fills_catalog_and_completes(jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  job = await _add_child(jobs_repo, hierarchy_level=1, job_type="syllabus", fanout_key="syllabus", subject_id="sub-1")
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, _generator()))

  finished = await processor.process_job(job.id)

  assert finished is not None
  assert finished.status == "completed"
  assert finished.content_ready
  assert finished.cost_usd == pytest.approx(0.1)
  (chapter,) = await catalog_repo.list_chapters("sub-1")
  topic_ids = [topic.id for topic in await catalog_repo.list_topics("sub-1")]
  assert chapter.title == "Algebra"
  assert finished.result_json == {"chapters": 1, "topics": 2, "outline": [{"chapterId": chapter.id, "topicIds": topic_ids}]}
  assert [event.event_type for event in jobs_repo.events] == ["claimed", "completed"]


@pytest.mark.anyio
async def test_topic_expand_upserts_without_duplicates(jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  chapter = catalog_repo.add_chapter("sub-1", "Algebra", ["Linear"])
  job = await _add_child(jobs_repo, hierarchy_level=2, job_type="topic_expand", fanout_key=f"chapter:{chapter.id}", chapter_id=chapter.id)
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, _generator()))

  finished = await processor.process_job(job.id)

  topics = await catalog_repo.list_topics("sub-1")
  assert [topic.title for topic in topics] == ["Linear", "Inequalities"]
  assert finished is not None
  assert finished.result_json == {"topics": 2, "topicIds": [topic.id for topic in topics]}


@pytest.mark.anyio
async def test_question_job_asks_for_configured_count(jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  generator = _generator()
  job = await _add_child(jobs_repo, hierarchy_level=4, job_type="question_gen", fanout_key="topic:tp-1:easy", topic_id="tp-1", difficulty="easy")
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, generator))

  finished = await processor.process_job(job.id)

  assert finished is not None
  assert generator.scopes[0].count == 3
  assert generator.scopes[0].difficulty == "easy"
  assert len(finished.result_json["questions"]) == 3


@pytest.mark.anyio
async def test_handler_error_fails_only_the_claimed_job(jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  generator = _generator()
  generator.failing_topics.add("tp-9")
  job = await _add_child(jobs_repo, hierarchy_level=3, job_type="note_gen", fanout_key="topic:tp-9", topic_id="tp-9")
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, generator))

  finished = await processor.process_job(job.id)

  assert finished is not None
  assert finished.status == "failed"
  assert finished.last_error == "RuntimeError: generation failed for tp-9"
  assert jobs_repo.jobs["root-1"].status == "pending"
  assert catalog_repo.notes == {}


@pytest.mark.anyio
async def test_empty_notes_count_as_failure(jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  job = await _add_child(jobs_repo, hierarchy_level=3, job_type="note_gen", fanout_key="topic:tp-1", topic_id="tp-1")
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, FakeContentGenerator()))

  finished = await processor.process_job(job.id)

  assert finished is not None
  assert finished.status == "failed"
  assert "no notes" in (finished.last_error or "")


@pytest.mark.anyio
async def test_already_claimed_job_is_not_processed_twice(jobs_repo: InMemoryHydrationJobsRepo) -> None:
  handler = AsyncMock()
  handler.process.return_value = HandlerOutput()
  job = await _add_child(jobs_repo, hierarchy_level=3, job_type="note_gen", fanout_key="topic:tp-1", topic_id="tp-1")
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=JobProcessorRegistry({"note_gen": handler}))

  await processor.process_job(job.id)
  second = await processor.process_job(job.id)

  assert second is None
  handler.process.assert_awaited_once()


@pytest.mark.anyio
async def test_process_next_only_claims_registered_types(jobs_repo: InMemoryHydrationJobsRepo) -> None:
  handler = AsyncMock()
  handler.process.return_value = HandlerOutput(result_json={"ok": True})
  await _add_child(jobs_repo, hierarchy_level=1, job_type="syllabus", fanout_key="syllabus")
  note_job = await _add_child(jobs_repo, hierarchy_level=3, job_type="note_gen", fanout_key="topic:tp-1", topic_id="tp-1")
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=JobProcessorRegistry({"note_gen": handler}))

  finished = await processor.process_next()

  assert finished is not None
  assert finished.id == note_job.id
  assert await processor.process_next() is None


def test_registry_rejects_unknown_job_types() -> None:
  with pytest.raises(ValueError):
    JobProcessorRegistry({}).resolve("mystery")


@pytest.mark.anyio
async def test_root_task_triggers_a_locked_reconcile() -> None:
  processor = AsyncMock()
  reconciler = AsyncMock()

  await handle_hydration_task("root-1", "hydrate_all", processor=processor, reconciler=reconciler)
  await handle_hydration_task("job-2", "note_gen", processor=processor, reconciler=reconciler)

  reconciler.reconcile.assert_awaited_once()
  processor.process_job.assert_awaited_once_with("job-2")


@pytest.mark.anyio
async def test_task_errors_are_logged_not_raised() -> None:
  processor = AsyncMock()
  processor.process_job.side_effect = RuntimeError("db down")

  await handle_hydration_task("job-2", "note_gen", processor=processor, reconciler=AsyncMock())
