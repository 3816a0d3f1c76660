"""Hydration reconciler: walks each open root level by level and fans out work.

How/Why:
- One tick scans open roots; for each root, levels 1..4 are visited in order and
  the walk stops at the first level that still has pending/running jobs.
- A level is planned only from what this root's own completed jobs produced: the
  syllabus outline recorded on the level-1 job and the topic ids recorded on each
  level-2 job. The shared subject catalog is never consulted, so another root
  filling the same subject cannot change this tree.
- Levels before the deepest level that already has rows are never planned again.
  The deepest level is topped up with insert-if-absent, so a repeated or crashed
  tick never duplicates children.
- Root counters are recomputed from job rows on every tick; nothing is incremented.
- Failed leaves are terminal. They lower the completed counters but never fail
  the root. Completion is written only while no descendant is open.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from app.jobs.lock import JobLockService
from app.jobs.models import (
  CHILD_LEVELS,
  HYDRATION_QUEUE,
  JOB_TYPE_BY_LEVEL,
  LEVEL_NOTES,
  LEVEL_QUESTIONS,
  LEVEL_SYLLABUS,
  LEVEL_TOPIC_EXPAND,
  OPEN_STATUSES,
  ChildJobSpec,
  HydrationJobRecord,
  LevelCounters,
)
from app.storage.hydration_repo import HydrationJobsRepository
from app.telemetry import metrics

logger = logging.getLogger(__name__)

RECONCILER_LOCK_NAME = "hydration_reconciler"
RECONCILER_LOCK_TTL_MS = 5 * 60 * 1000


@dataclass
class RootReconcileResult:
  root_job_id: str
  created_by_level: dict[int, int] = field(default_factory=dict)
  blocked_at_level: int | None = None
  completed: bool = False
  counters: LevelCounters = field(default_factory=LevelCounters)

  @property
  def created(self) -> int:
    return sum(self.created_by_level.values())


@dataclass
class ReconcileReport:
  skipped: bool = False
  reason: str | None = None
  roots_scanned: int = 0
  roots_completed: int = 0
  jobs_created: int = 0
  errors: int = 0
  results: list[RootReconcileResult] = field(default_factory=list)


def _id_list(value: Any, *, job: HydrationJobRecord, key: str) -> list[str]:
  if value is None:
    return []
  if not isinstance(value, list) or not all(isinstance(item, str) and item for item in value):
    raise ValueError(f"Job {job.id} has a malformed {key} result.")
  return value


def _unique(ids: list[str]) -> list[str]:
  return list(dict.fromkeys(ids))


@dataclass
class ProducedUnits:
  """Chapters and topics one root's completed jobs have produced so far."""

  chapters: list[str] = field(default_factory=list)
  outline_topics: dict[str, list[str]] = field(default_factory=dict)
  expanded: dict[str, list[str]] = field(default_factory=dict)

  @classmethod
  def from_jobs(cls, level_jobs: dict[int, list[HydrationJobRecord]]) -> ProducedUnits:
    units = cls()
    for job in level_jobs.get(LEVEL_SYLLABUS, []):
      if job.status != "completed":
        continue
      outline = (job.result_json or {}).get("outline")
      if outline is None:
        continue
      if not isinstance(outline, list):
        raise ValueError(f"Job {job.id} has a malformed outline result.")
      for entry in outline:
        if not isinstance(entry, dict) or not isinstance(entry.get("chapterId"), str):
          raise ValueError(f"Job {job.id} has a malformed outline result.")
        chapter_id = entry["chapterId"]
        if chapter_id not in units.outline_topics:
          units.chapters.append(chapter_id)
          units.outline_topics[chapter_id] = []
        units.outline_topics[chapter_id] = _unique(units.outline_topics[chapter_id] + _id_list(entry.get("topicIds"), job=job, key="outline"))
    for job in level_jobs.get(LEVEL_TOPIC_EXPAND, []):
      if job.status != "completed" or not job.chapter_id:
        continue
      expansion = _id_list((job.result_json or {}).get("topicIds"), job=job, key="topicIds")
      units.expanded[job.chapter_id] = _unique(units.outline_topics.get(job.chapter_id, []) + expansion)
    return units

  def topic_units(self) -> list[tuple[str, str]]:
    """(chapter_id, topic_id) for every topic under a chapter whose expansion completed."""
    ordered = self.chapters + [chapter_id for chapter_id in self.expanded if chapter_id not in self.outline_topics]
    return [(chapter_id, topic_id) for chapter_id in ordered for topic_id in self.expanded.get(chapter_id, [])]

  def known_topic_count(self) -> int:
    topics: set[tuple[str, str]] = set()
    for chapter_id, topic_ids in self.outline_topics.items():
      topics.update((chapter_id, topic_id) for topic_id in topic_ids)
    for chapter_id, topic_ids in self.expanded.items():
      topics.update((chapter_id, topic_id) for topic_id in topic_ids)
    return len(topics)


class HydrationReconciler:
  """Drive every open hydration tree one step closer to completion."""

  def __init__(
    self,
    jobs_repo: HydrationJobsRepository,
    *,
    lock_service: JobLockService | None = None,
    batch_size: int = 100,
    queue: str = HYDRATION_QUEUE,
    clock: Callable[[], datetime] | None = None,
  ) -> None:
    self._jobs = jobs_repo
    self._locks = lock_service
    self._batch_size = batch_size
    self._queue = queue
    self._clock = clock or (lambda: datetime.now(UTC))

  async def reconcile(self) -> ReconcileReport:
    """Run one tick under the reconciler lock; skip entirely when it is held."""
    if self._locks is None:
      raise RuntimeError("reconcile() needs a lock service; use reconcile_once() when the caller already holds the lock.")
    lock = await self._locks.acquire(RECONCILER_LOCK_NAME, RECONCILER_LOCK_TTL_MS)
    if lock.skipped:
      logger.info("Reconciler tick skipped: %s", lock.reason)
      return ReconcileReport(skipped=True, reason=lock.reason)
    try:
      return await self.reconcile_once()
    finally:
      await self._locks.release(RECONCILER_LOCK_NAME)

  async def reconcile_once(self) -> ReconcileReport:
    """Run one tick without taking the lock."""
    report = ReconcileReport()
    roots = await self._jobs.list_open_roots(limit=self._batch_size)
    report.roots_scanned = len(roots)
    for root in roots:
      try:
        result = await self.reconcile_root(root)
      except asyncio.CancelledError:
        raise
      except Exception:  # noqa: BLE001
        # One broken tree must not stop the others.
        report.errors += 1
        logger.error("Failed to reconcile root job %s", root.id, exc_info=True)
        continue
      report.results.append(result)
      report.jobs_created += result.created
      if result.completed:
        report.roots_completed += 1
    if roots:
      logger.info("Reconciler tick: roots=%d created=%d completed=%d errors=%d", report.roots_scanned, report.jobs_created, report.roots_completed, report.errors)
    return report

  async def reconcile_root(self, root: HydrationJobRecord) -> RootReconcileResult:
    if not root.is_root:
      raise ValueError(f"Job {root.id} is not a root job.")
    result = RootReconcileResult(root_job_id=root.id)
    rows = {level: await self._jobs.list_jobs(root_job_id=root.id, hierarchy_level=level) for level in CHILD_LEVELS}
    deepest = max((level for level, jobs in rows.items() if jobs), default=LEVEL_SYLLABUS)
    level_jobs: dict[int, list[HydrationJobRecord]] = {}

    for level in CHILD_LEVELS:
      jobs = rows[level]
      if level >= deepest:
        plan = self._plan_level(level, root, level_jobs)
        existing_keys = {job.fanout_key for job in jobs}
        missing = [spec for spec in plan if spec.fanout_key not in existing_keys]
        if missing:
          created = await self._jobs.insert_children_if_absent(root=root, specs=missing, queue=self._queue)
          if created:
            result.created_by_level[level] = len(created)
            metrics.record_jobs_created(level, len(created))
            logger.info("Root %s: created %d %s jobs at level %d", root.id, len(created), JOB_TYPE_BY_LEVEL[level], level)
            await self._event(root, "fanout", f"Created {len(created)} {JOB_TYPE_BY_LEVEL[level]} jobs", {"level": level, "count": len(created)})
          if len(created) < len(missing):
            # Some rows already existed; read the level back instead of guessing.
            jobs = await self._jobs.list_jobs(root_job_id=root.id, hierarchy_level=level)
          else:
            jobs = jobs + created

      level_jobs[level] = jobs
      if not jobs:
        # Nothing to do at this level (e.g. zero chapters or the feature is off).
        continue

      if any(job.status in OPEN_STATUSES for job in jobs):
        result.blocked_at_level = level
        break

    # Rows past a blocked level (a retried parent) still count toward progress.
    for level, jobs in rows.items():
      if jobs:
        level_jobs.setdefault(level, jobs)

    counters = compute_counters(root, level_jobs)
    result.counters = counters
    cost = await self._jobs.sum_descendant_cost(root.id)
    now = self._clock()

    status = None
    started_at = None
    if root.status == "pending":
      status = "running"
      started_at = root.started_at or now
    await self._jobs.update_job(root.id, status=status, counters=counters, cost_usd=cost, started_at=started_at)

    if result.blocked_at_level is None:
      result.completed = await self._jobs.complete_root_if_settled(root.id, completed_at=now)
      if result.completed:
        logger.info("Root %s completed", root.id)
        await self._event(root, "completed", "All levels are terminal", {"failedJobs": _failed_count(level_jobs)})
      else:
        logger.info("Root %s has open descendants again; completion left to the next tick", root.id)
    return result

  def _plan_level(self, level: int, root: HydrationJobRecord, level_jobs: dict[int, list[HydrationJobRecord]]) -> list[ChildJobSpec]:
    """Return every unit of work that should exist at a level."""
    options = root.options
    job_type = JOB_TYPE_BY_LEVEL[level]
    if level == LEVEL_SYLLABUS:
      return [ChildJobSpec(hierarchy_level=level, job_type=job_type, fanout_key="syllabus", parent_job_id=root.id, subject_id=root.subject_id)]

    units = ProducedUnits.from_jobs(level_jobs)
    syllabus_parent = _first_id(level_jobs.get(LEVEL_SYLLABUS)) or root.id
    chapter_jobs = {job.chapter_id: job.id for job in level_jobs.get(LEVEL_TOPIC_EXPAND, [])}

    if level == LEVEL_TOPIC_EXPAND:
      return [ChildJobSpec(hierarchy_level=level, job_type=job_type, fanout_key=f"chapter:{chapter_id}", parent_job_id=syllabus_parent, subject_id=root.subject_id, chapter_id=chapter_id) for chapter_id in units.chapters]

    if level == LEVEL_NOTES:
      if not options.generate_notes:
        return []
      return [
        ChildJobSpec(hierarchy_level=level, job_type=job_type, fanout_key=f"topic:{topic_id}", parent_job_id=chapter_jobs.get(chapter_id, syllabus_parent), subject_id=root.subject_id, chapter_id=chapter_id, topic_id=topic_id)
        for chapter_id, topic_id in units.topic_units()
      ]

    if level == LEVEL_QUESTIONS:
      if not options.generate_questions:
        return []
      note_jobs = {job.topic_id: job.id for job in level_jobs.get(LEVEL_NOTES, [])}
      # With notes on, questions follow the note rows (failed ones included) so level 4 never outruns level 3.
      topics: list[tuple[str | None, str]] = list(units.topic_units())
      if options.generate_notes:
        topics = [(job.chapter_id, job.topic_id) for job in level_jobs.get(LEVEL_NOTES, []) if job.topic_id]
      specs: list[ChildJobSpec] = []
      for chapter_id, topic_id in topics:
        parent = note_jobs.get(topic_id) or chapter_jobs.get(chapter_id) or syllabus_parent
        for difficulty in options.difficulties:
          specs.append(
            ChildJobSpec(hierarchy_level=level, job_type=job_type, fanout_key=f"topic:{topic_id}:{difficulty}", parent_job_id=parent, subject_id=root.subject_id, chapter_id=chapter_id, topic_id=topic_id, difficulty=difficulty)
          )
      return specs

    raise ValueError(f"Unknown hierarchy level {level}")

  async def _event(self, root: HydrationJobRecord, event_type: str, message: str, payload: dict[str, object]) -> None:
    try:
      await self._jobs.append_event(job_id=root.id, root_job_id=root.id, event_type=event_type, message=message, payload_json=payload)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to append %s event for root %s", event_type, root.id, exc_info=True)


def compute_counters(root: HydrationJobRecord, level_jobs: dict[int, list[HydrationJobRecord]]) -> LevelCounters:
  """Derive root counters from current rows; levels not reached keep their estimates."""
  stored = root.counters
  options = root.options

  if LEVEL_TOPIC_EXPAND in level_jobs:
    units = ProducedUnits.from_jobs(level_jobs)
    chapters_expected, chapters_completed = _level_pair(level_jobs[LEVEL_TOPIC_EXPAND])
    topics_expected = units.known_topic_count()
    topics_completed = len(units.topic_units())
  else:
    chapters_expected, chapters_completed = stored.chapters_expected, 0
    topics_expected, topics_completed = stored.topics_expected, 0

  if LEVEL_NOTES in level_jobs:
    notes_expected, notes_completed = _level_pair(level_jobs[LEVEL_NOTES])
  else:
    notes_expected, notes_completed = (stored.notes_expected if options.generate_notes else 0), 0

  if LEVEL_QUESTIONS in level_jobs:
    questions_expected, questions_completed = _level_pair(level_jobs[LEVEL_QUESTIONS])
  else:
    questions_expected, questions_completed = (stored.questions_expected if options.generate_questions else 0), 0

  return LevelCounters(
    chapters_expected=chapters_expected,
    chapters_completed=chapters_completed,
    topics_expected=topics_expected,
    topics_completed=topics_completed,
    notes_expected=notes_expected,
    notes_completed=notes_completed,
    questions_expected=questions_expected,
    questions_completed=questions_completed,
  )


def _level_pair(jobs: list[HydrationJobRecord]) -> tuple[int, int]:
  return len(jobs), sum(1 for job in jobs if job.status == "completed")


def _first_id(jobs: list[HydrationJobRecord] | None) -> str | None:
  if not jobs:
    return None
  return jobs[0].id


def _failed_count(level_jobs: dict[int, list[HydrationJobRecord]]) -> int:
  return sum(1 for jobs in level_jobs.values() for job in jobs if job.status == "failed")
