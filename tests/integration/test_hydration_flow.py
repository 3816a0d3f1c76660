"""Submit a subject and drive its tree to completion through the public API."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from app.jobs.dispatch import build_default_registry
from app.jobs.reconciler import HydrationReconciler
from app.jobs.worker import HydrationJobProcessor
from app.services.content_generator import ChapterOutline, GenerationResult, GenerationScope, TopicOutline
from tests.fakes import FakeContentGenerator, InMemoryCatalogRepo, InMemoryHydrationJobsRepo


def _syllabus(scope: GenerationScope) -> GenerationResult:
  chapters = [ChapterOutline(title=f"Chapter {n}", topics=[TopicOutline(title=f"Topic {n}.{m}") for m in (1, 2)]) for n in (1, 2)]
  return GenerationResult(chapters=chapters, cost_usd=0.1)


def _generator() -> FakeContentGenerator:
  return FakeContentGenerator(
    {
      "syllabus": _syllabus,
      "topic_expand": lambda scope: GenerationResult(cost_usd=0.05),
      "note_gen": lambda scope: GenerationResult(markdown=f"# Notes for {scope.topic_id}", cost_usd=0.2),
      "question_gen": lambda scope: GenerationResult(questions=[{"q": f"{scope.difficulty}-{i}"} for i in range(scope.count or 0)], cost_usd=0.3),
    }
  )


async def _drain(processor: HydrationJobProcessor) -> int:
  processed = 0
  while await processor.process_next() is not None:
    processed += 1
  return processed


@pytest.mark.anyio
async def test_subject_hydrates_level_by_level(async_client: AsyncClient, jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  generator = _generator()
  reconciler = HydrationReconciler(jobs_repo)
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, generator))

  submitted = await async_client.post("/admin/hydrate-all", json={"language": "en", "boardCode": "CBSE", "grade": 10, "subjectCode": "MATH", "options": {"difficulties": ["easy", "medium"], "questionsPerDifficulty": 3}})
  root_id = submitted.json()["rootJobId"]

  # Each round fans out one level and the workers drain it.
  processed_per_round = []
  for _ in range(4):
    await reconciler.reconcile_once()
    processed_per_round.append(await _drain(processor))
  final = await reconciler.reconcile_once()

  assert processed_per_round == [1, 2, 4, 8]
  assert final.roots_completed == 1

  response = await async_client.get(f"/admin/hydrate-all/{root_id}")
  body = response.json()
  assert body["status"] == "completed"
  assert body["progress"]["overallPercent"] == 100
  assert body["progress"]["levels"] == {
    "chapters": {"completed": 2, "expected": 2},
    "topics": {"completed": 4, "expected": 4},
    "notes": {"completed": 4, "expected": 4},
    "questions": {"completed": 8, "expected": 8},
  }
  assert body["childJobSummary"] == {"syllabus": {"completed": 1}, "topic_expand": {"completed": 2}, "note_gen": {"completed": 4}, "question_gen": {"completed": 8}}
  assert body["contentReadyJobs"] == 15
  assert body["failedJobs"] == []
  assert body["cost"]["actual"] == pytest.approx(3.4)
  assert body["timing"]["finishedAt"] is not None
  assert len(catalog_repo.notes) == 4
  assert {scope.count for scope in generator.scopes if scope.job_type == "question_gen"} == {3}

  listing = (await async_client.get("/admin/hydrate-all", params={"status": "completed"})).json()
  assert listing["total"] == 1
  assert listing["items"][0]["progressPercent"] == 100


@pytest.mark.anyio
async def test_failed_question_job_can_be_retried_to_completion(async_client: AsyncClient, jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo) -> None:
  generator = _generator()
  reconciler = HydrationReconciler(jobs_repo)
  processor = HydrationJobProcessor(jobs_repo=jobs_repo, registry=build_default_registry(catalog_repo, generator))
  submitted = await async_client.post("/admin/hydrate-all", json={"language": "en", "boardCode": "CBSE", "grade": 10, "subjectCode": "MATH", "options": {"difficulties": ["easy"], "generateNotes": False}})
  root_id = submitted.json()["rootJobId"]

  await reconciler.reconcile_once()
  await _drain(processor)
  await reconciler.reconcile_once()
  await _drain(processor)
  generator.failing_topics.add(sorted(catalog_repo.topics)[0])
  await reconciler.reconcile_once()
  await _drain(processor)
  await reconciler.reconcile_once()

  body = (await async_client.get(f"/admin/hydrate-all/{root_id}")).json()
  assert body["status"] == "completed"
  assert body["progress"]["levels"]["questions"] == {"completed": 3, "expected": 4}
  assert body["progress"]["levels"]["notes"] == {"completed": 0, "expected": 0}
  (failed,) = body["failedJobs"]
  assert failed["jobType"] == "question_gen"

  generator.failing_topics.clear()
  retried = await async_client.post(f"/admin/hydrate-all/{failed['id']}/retry")
  assert retried.status_code == 200
  reopened = (await async_client.get(f"/admin/hydrate-all/{root_id}")).json()
  assert reopened["status"] == "running"

  await _drain(processor)
  await reconciler.reconcile_once()
  body = (await async_client.get(f"/admin/hydrate-all/{root_id}")).json()
  assert body["status"] == "completed"
  assert body["progress"]["levels"]["questions"] == {"completed": 4, "expected": 4}
  assert body["failedJobs"] == []
