"""In-memory repositories and collaborators shared by the test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from app.config import Settings
from app.jobs.models import (
  CHILD_LEVELS,
  LEVEL_ROOT,
  OPEN_STATUSES,
  TERMINAL_STATUSES,
  ChildJobSpec,
  HydrationJobRecord,
  JobStatus,
  LevelCounters,
  LevelStatusCounts,
  WorkerLifecycleRecord,
  WorkerStatus,
)
from app.services.content_generator import GenerationResult, GenerationScope
from app.storage.catalog_repo import ChapterRecord, SubjectRecord, TopicRecord, slugify
from app.storage.hydration_repo import HydrationJobNotFoundError, InvalidJobTransitionError, JobEventRecord
from app.storage.outbox_repo import OutboxMessage

BASE_TIME = datetime(2025, 1, 1, tzinfo=UTC)


def outbox_payload(job_id: str, job_type: str) -> dict[str, Any]:
  return {"type": job_type.upper(), "payload": {"jobId": job_id}}


class Clock:
  """Manually advanced clock."""

  def __init__(self, start: datetime = BASE_TIME) -> None:
    self.now = start

  def __call__(self) -> datetime:
    return self.now

  def advance(self, **kwargs: float) -> datetime:
    self.now = self.now + timedelta(**kwargs)
    return self.now


class InMemoryHydrationJobsRepo:
  """Mimics the Postgres repository, including the (root, level, fanoutKey) unique key."""

  def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
    self.jobs: dict[str, HydrationJobRecord] = {}
    self.outbox: list[dict[str, Any]] = []
    self.events: list[JobEventRecord] = []
    self._clock = clock or (lambda: BASE_TIME)
    self._seq = 0
    self._ids = 0

  def _next_created_at(self) -> datetime:
    # Keeps insertion order stable even with a frozen clock.
    self._seq += 1
    return self._clock() + timedelta(microseconds=self._seq)

  def _next_id(self) -> str:
    self._ids += 1
    return f"job-{self._ids:04d}"

  def _copy(self, record: HydrationJobRecord) -> HydrationJobRecord:
    return replace(record, input_params=dict(record.input_params))

  def children(self, root_job_id: str, level: int | None = None) -> list[HydrationJobRecord]:
    rows = [job for job in self.jobs.values() if job.root_job_id == root_job_id and (level is None or job.hierarchy_level == level)]
    return sorted(rows, key=lambda job: job.created_at or BASE_TIME)

  async def create_root_job(self, record: HydrationJobRecord, *, queue: str) -> HydrationJobRecord:
    stored = replace(record, root_job_id=None, parent_job_id=None, hierarchy_level=LEVEL_ROOT, created_at=self._next_created_at())
    self.jobs[stored.id] = stored
    self.outbox.append({"queue": queue, **outbox_payload(stored.id, stored.job_type)})
    return self._copy(stored)

  async def get_job(self, job_id: str) -> HydrationJobRecord | None:
    job = self.jobs.get(job_id)
    return self._copy(job) if job else None

  async def list_open_roots(self, *, limit: int) -> list[HydrationJobRecord]:
    roots = [job for job in self.jobs.values() if job.is_root and job.status in OPEN_STATUSES]
    roots.sort(key=lambda job: job.created_at or BASE_TIME)
    return [self._copy(job) for job in roots[:limit]]

  async def list_jobs(self, *, root_job_id: str, hierarchy_level: int, status: JobStatus | None = None) -> list[HydrationJobRecord]:
    rows = self.children(root_job_id, hierarchy_level)
    if status is not None:
      rows = [job for job in rows if job.status == status]
    return [self._copy(job) for job in rows]

  async def count_by_status(self, *, root_job_id: str, hierarchy_level: int) -> LevelStatusCounts:
    counts: dict[str, int] = {}
    for job in self.children(root_job_id, hierarchy_level):
      counts[job.status] = counts.get(job.status, 0) + 1
    return LevelStatusCounts(hierarchy_level=hierarchy_level, counts=counts)

  async def insert_children_if_absent(self, *, root: HydrationJobRecord, specs: list[ChildJobSpec], queue: str) -> list[HydrationJobRecord]:
    existing = {(job.root_job_id, job.hierarchy_level, job.fanout_key) for job in self.jobs.values()}
    created: list[HydrationJobRecord] = []
    for spec in specs:
      key = (root.id, spec.hierarchy_level, spec.fanout_key)
      if key in existing:
        continue
      existing.add(key)
      record = HydrationJobRecord(
        id=self._next_id(),
        hierarchy_level=spec.hierarchy_level,
        job_type=spec.job_type,
        language=root.language,
        root_job_id=root.id,
        parent_job_id=spec.parent_job_id,
        fanout_key=spec.fanout_key,
        subject_id=spec.subject_id or root.subject_id,
        chapter_id=spec.chapter_id,
        topic_id=spec.topic_id,
        difficulty=spec.difficulty,
        board=root.board,
        grade=root.grade,
        subject_code=root.subject_code,
        input_params={"options": root.input_params.get("options", {})},
        created_at=self._next_created_at(),
      )
      self.jobs[record.id] = record
      self.outbox.append({"queue": queue, **outbox_payload(record.id, record.job_type)})
      created.append(record)
    return [self._copy(job) for job in sorted(created, key=lambda job: job.fanout_key or "")]

  async def update_job(self, job_id: str, *, status: JobStatus | None = None, counters: LevelCounters | None = None, cost_usd: float | None = None, started_at: datetime | None = None, completed_at: datetime | None = None) -> HydrationJobRecord | None:
    job = self.jobs.get(job_id)
    if job is None:
      return None
    changes: dict[str, Any] = {key: value for key, value in {"status": status, "counters": counters, "cost_usd": cost_usd, "started_at": started_at, "completed_at": completed_at}.items() if value is not None}
    self.jobs[job_id] = replace(job, **changes)
    return self._copy(self.jobs[job_id])

  async def complete_root_if_settled(self, root_job_id: str, *, completed_at: datetime) -> bool:
    root = self.jobs.get(root_job_id)
    if root is None or root.status not in OPEN_STATUSES:
      return False
    if any(job.status in OPEN_STATUSES for job in self.children(root_job_id)):
      return False
    self.jobs[root_job_id] = replace(root, status="completed", completed_at=completed_at)
    return True

  async def sum_descendant_cost(self, root_job_id: str) -> float:
    return float(sum(job.cost_usd for job in self.jobs.values() if job.root_job_id == root_job_id))

  def _claim(self, job: HydrationJobRecord) -> HydrationJobRecord:
    now = self._clock()
    claimed = replace(job, status="running", locked_at=now, attempts=job.attempts + 1, started_at=job.started_at or now)
    self.jobs[job.id] = claimed
    return self._copy(claimed)

  async def claim_job(self, job_id: str) -> HydrationJobRecord | None:
    job = self.jobs.get(job_id)
    if job is None or job.status != "pending" or job.is_root:
      return None
    return self._claim(job)

  async def claim_next(self, *, job_types: tuple[str, ...] | None = None) -> HydrationJobRecord | None:
    candidates = [job for job in self.jobs.values() if job.status == "pending" and job.hierarchy_level in CHILD_LEVELS and (not job_types or job.job_type in job_types)]
    if not candidates:
      return None
    candidates.sort(key=lambda job: job.created_at or BASE_TIME)
    return self._claim(candidates[0])

  async def complete_job(self, job_id: str, *, result_json: dict[str, Any] | None = None, cost_usd: float = 0.0) -> HydrationJobRecord | None:
    return self._finish(job_id, status="completed", result_json=result_json, cost_usd=cost_usd, error=None)

  async def fail_job(self, job_id: str, *, error: str) -> HydrationJobRecord | None:
    return self._finish(job_id, status="failed", result_json=None, cost_usd=None, error=error)

  def _finish(self, job_id: str, *, status: JobStatus, result_json: dict[str, Any] | None, cost_usd: float | None, error: str | None) -> HydrationJobRecord | None:
    job = self.jobs.get(job_id)
    if job is None:
      return None
    if job.status != "running":
      raise InvalidJobTransitionError(f"Job {job_id} is {job.status}, expected running.")
    finished = replace(
      job,
      status=status,
      completed_at=self._clock(),
      locked_at=None,
      result_json=result_json if result_json is not None else job.result_json,
      cost_usd=cost_usd if cost_usd is not None else job.cost_usd,
      content_ready=job.content_ready or status == "completed",
      last_error=None if status == "completed" else error,
    )
    self.jobs[job_id] = finished
    return self._copy(finished)

  async def mark_content_ready(self, job_id: str) -> None:
    if job_id in self.jobs:
      self.jobs[job_id] = replace(self.jobs[job_id], content_ready=True)

  async def reset_failed_job(self, job_id: str, *, queue: str) -> HydrationJobRecord:
    job = self.jobs.get(job_id)
    if job is None:
      raise HydrationJobNotFoundError(job_id)
    if job.status != "failed":
      raise InvalidJobTransitionError(f"Only failed jobs can be retried (job {job_id} is {job.status}).")
    reset = replace(job, status="pending", attempts=0, last_error=None, locked_at=None, completed_at=None)
    self.jobs[job_id] = reset
    self.outbox.append({"queue": queue, **outbox_payload(reset.id, reset.job_type)})
    root = self.jobs.get(job.root_job_id or "")
    if root is not None and root.status in TERMINAL_STATUSES:
      self.jobs[root.id] = replace(root, status="running", completed_at=None)
    return self._copy(reset)

  async def release_stale_claims(self, *, claimed_before: datetime, queue: str) -> list[HydrationJobRecord]:
    released: list[HydrationJobRecord] = []
    for job in list(self.jobs.values()):
      if job.status == "running" and job.hierarchy_level in CHILD_LEVELS and job.locked_at is not None and job.locked_at < claimed_before:
        self.jobs[job.id] = replace(job, status="pending", locked_at=None)
        self.outbox.append({"queue": queue, **outbox_payload(job.id, job.job_type)})
        released.append(self._copy(self.jobs[job.id]))
    return released

  async def list_roots(self, *, status: JobStatus | None, limit: int, offset: int) -> tuple[list[HydrationJobRecord], int]:
    roots = [job for job in self.jobs.values() if job.is_root and (status is None or job.status == status)]
    roots.sort(key=lambda job: job.created_at or BASE_TIME, reverse=True)
    return [self._copy(job) for job in roots[offset : offset + limit]], len(roots)

  async def list_failed_jobs(self, root_job_id: str) -> list[HydrationJobRecord]:
    return [self._copy(job) for job in self.children(root_job_id) if job.status == "failed"]

  async def summarize_children(self, root_job_id: str) -> dict[str, dict[str, int]]:
    summary: dict[str, dict[str, int]] = {}
    for job in self.children(root_job_id):
      by_status = summary.setdefault(job.job_type, {})
      by_status[job.status] = by_status.get(job.status, 0) + 1
    return summary

  async def count_content_ready(self, root_job_id: str) -> int:
    return sum(1 for job in self.children(root_job_id) if job.content_ready)

  async def append_event(self, *, job_id: str, root_job_id: str, event_type: str, message: str, payload_json: dict[str, Any] | None = None) -> None:
    self.events.append(JobEventRecord(job_id=job_id, event_type=event_type, message=message, created_at=self._next_created_at(), payload_json=payload_json))

  async def list_events(self, *, root_job_id: str, limit: int = 20) -> list[JobEventRecord]:
    tree = {job.id for job in self.jobs.values() if job.id == root_job_id or job.root_job_id == root_job_id}
    rows = [event for event in self.events if event.job_id in tree]
    return rows[-limit:]


class InMemoryCatalogRepo:
  """Catalog keyed by slug like the Postgres upserts."""

  def __init__(self) -> None:
    self.subjects: dict[tuple[str, int, str], SubjectRecord] = {}
    self.chapters: dict[str, ChapterRecord] = {}
    self.topics: dict[str, TopicRecord] = {}
    self.notes: dict[str, str] = {}
    self._ids = 0

  def _next_id(self, prefix: str) -> str:
    self._ids += 1
    return f"{prefix}-{self._ids}"

  def add_chapter(self, subject_id: str, title: str, topics: list[str]) -> ChapterRecord:
    """Seed a chapter and its topics directly."""
    chapter = ChapterRecord(id=self._next_id("ch"), subject_id=subject_id, title=title, order_index=len([c for c in self.chapters.values() if c.subject_id == subject_id]))
    self.chapters[chapter.id] = chapter
    for index, topic_title in enumerate(topics):
      topic = TopicRecord(id=self._next_id("tp"), chapter_id=chapter.id, title=topic_title, order_index=index)
      self.topics[topic.id] = topic
    return chapter

  async def find_or_create_subject(self, *, board_code: str, grade: int, code: str, name: str | None = None) -> SubjectRecord:
    key = (board_code, grade, code)
    if key not in self.subjects:
      self.subjects[key] = SubjectRecord(id=self._next_id("sub"), board_code=board_code, grade=grade, code=code, name=name or code)
    return self.subjects[key]

  async def list_chapters(self, subject_id: str) -> list[ChapterRecord]:
    return sorted((c for c in self.chapters.values() if c.subject_id == subject_id), key=lambda c: c.order_index)

  async def list_topics(self, subject_id: str) -> list[TopicRecord]:
    chapters = await self.list_chapters(subject_id)
    topics: list[TopicRecord] = []
    for chapter in chapters:
      topics.extend(sorted((t for t in self.topics.values() if t.chapter_id == chapter.id), key=lambda t: t.order_index))
    return topics

  async def upsert_chapter(self, *, subject_id: str, title: str, order_index: int) -> ChapterRecord:
    for chapter in self.chapters.values():
      if chapter.subject_id == subject_id and slugify(chapter.title) == slugify(title):
        updated = replace(chapter, title=title, order_index=order_index)
        self.chapters[chapter.id] = updated
        return updated
    chapter = ChapterRecord(id=self._next_id("ch"), subject_id=subject_id, title=title, order_index=order_index)
    self.chapters[chapter.id] = chapter
    return chapter

  async def upsert_topic(self, *, chapter_id: str, title: str, order_index: int) -> TopicRecord:
    for topic in self.topics.values():
      if topic.chapter_id == chapter_id and slugify(topic.title) == slugify(title):
        updated = replace(topic, title=title, order_index=order_index)
        self.topics[topic.id] = updated
        return updated
    topic = TopicRecord(id=self._next_id("tp"), chapter_id=chapter_id, title=title, order_index=order_index)
    self.topics[topic.id] = topic
    return topic

  async def save_topic_notes(self, topic_id: str, notes_markdown: str) -> None:
    self.notes[topic_id] = notes_markdown


class InMemoryWorkerLifecycleRepo:
  def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
    self.rows: dict[str, WorkerLifecycleRecord] = {}
    self.heartbeats: list[str] = []
    self._clock = clock or (lambda: BASE_TIME)
    self._ids = 0

  async def create(self, *, worker_type: str, status: WorkerStatus = "STARTING", meta: dict[str, Any] | None = None, lifecycle_id: str | None = None) -> WorkerLifecycleRecord:
    self._ids += 1
    record = WorkerLifecycleRecord(id=lifecycle_id or f"wl-{self._ids}", type=worker_type, status=status, meta=meta, created_at=self._clock() + timedelta(microseconds=self._ids))
    self.rows[record.id] = record
    return replace(record)

  async def get(self, lifecycle_id: str) -> WorkerLifecycleRecord | None:
    row = self.rows.get(lifecycle_id)
    return replace(row) if row else None

  async def list_by_status(self, status: WorkerStatus) -> list[WorkerLifecycleRecord]:
    rows = [row for row in self.rows.values() if row.status == status]
    return [replace(row) for row in sorted(rows, key=lambda row: row.created_at or BASE_TIME)]

  async def list_recent(self, *, limit: int = 100) -> list[WorkerLifecycleRecord]:
    rows = sorted(self.rows.values(), key=lambda row: row.created_at or BASE_TIME, reverse=True)
    return [replace(row) for row in rows[:limit]]

  async def count_by_status(self) -> dict[str, int]:
    counts: dict[str, int] = {}
    for row in self.rows.values():
      counts[row.status] = counts.get(row.status, 0) + 1
    return counts

  async def mark_running(self, lifecycle_id: str, *, pid: int | None, host: str | None, meta: dict[str, Any] | None = None) -> None:
    row = self.rows[lifecycle_id]
    self.rows[lifecycle_id] = replace(row, status="RUNNING", pid=pid, host=host, started_at=self._clock(), meta={**(row.meta or {}), **(meta or {})})

  async def mark_exited(self, lifecycle_id: str, *, status: WorkerStatus, meta: dict[str, Any] | None = None) -> None:
    row = self.rows[lifecycle_id]
    self.rows[lifecycle_id] = replace(row, status=status, stopped_at=self._clock(), meta={**(row.meta or {}), **(meta or {})})

  async def ensure_registered(self, lifecycle_id: str, *, worker_type: str, pid: int, host: str) -> WorkerLifecycleRecord:
    row = self.rows.get(lifecycle_id) or WorkerLifecycleRecord(id=lifecycle_id, type=worker_type, status="RUNNING", created_at=self._clock())
    self.rows[lifecycle_id] = replace(row, status="RUNNING", pid=pid, host=host, started_at=row.started_at or self._clock(), last_heartbeat_at=self._clock())
    return replace(self.rows[lifecycle_id])

  async def heartbeat(self, lifecycle_id: str) -> None:
    self.heartbeats.append(lifecycle_id)
    if lifecycle_id in self.rows:
      self.rows[lifecycle_id] = replace(self.rows[lifecycle_id], last_heartbeat_at=self._clock())

  async def set_status(self, lifecycle_id: str, status: WorkerStatus) -> None:
    row = self.rows[lifecycle_id]
    stopped_at = self._clock() if status in {"STOPPED", "FAILED"} else row.stopped_at
    self.rows[lifecycle_id] = replace(row, status=status, stopped_at=stopped_at)


class InMemoryOutboxRepo:
  def __init__(self, payloads: list[dict[str, Any]] | None = None) -> None:
    self.messages = [OutboxMessage(id=index + 1, queue="content-hydration", payload=payload, attempts=0) for index, payload in enumerate(payloads or [])]
    self.sent: list[int] = []
    self.failures: dict[int, str] = {}

  async def list_unsent(self, *, limit: int) -> list[OutboxMessage]:
    return [message for message in self.messages if message.id not in self.sent][:limit]

  async def mark_sent(self, message_id: int) -> None:
    self.sent.append(message_id)

  async def mark_failed(self, message_id: int, *, error: str) -> None:
    self.failures[message_id] = error
    self.messages = [replace(message, attempts=message.attempts + 1) if message.id == message_id else message for message in self.messages]


class InMemoryJobLockRepo:
  """Compare-and-set TTL locks; each call completes without yielding, like one SQL statement."""

  def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
    self.locks: dict[str, tuple[str, datetime]] = {}
    self.fail_acquire = False
    self._clock = clock or (lambda: BASE_TIME)

  async def try_acquire(self, *, name: str, owner: str, ttl_ms: int) -> bool:
    if self.fail_acquire:
      raise ConnectionError("database unavailable")
    now = self._clock()
    held = self.locks.get(name)
    if held is not None and held[1] >= now:
      return False
    self.locks[name] = (owner, now + timedelta(milliseconds=ttl_ms))
    return True

  async def release(self, *, name: str, owner: str) -> None:
    held = self.locks.get(name)
    if held is not None and held[0] == owner:
      del self.locks[name]


class InMemoryAuditRepo:
  def __init__(self) -> None:
    self.events: list[dict[str, Any]] = []

  async def insert_event(self, *, event_type: str, details: dict[str, Any] | None = None, actor: str | None = None) -> None:
    self.events.append({"event_type": event_type, "details": details or {}, "actor": actor})

  def types(self) -> list[str]:
    return [event["event_type"] for event in self.events]


class FakeContentGenerator:
  """Returns canned results per job type and records every scope it saw."""

  available = True

  def __init__(self, results: dict[str, Callable[[GenerationScope], GenerationResult]] | None = None) -> None:
    self._results = results or {}
    self.scopes: list[GenerationScope] = []
    self.failing_topics: set[str] = set()

  async def generate(self, scope: GenerationScope) -> GenerationResult:
    self.scopes.append(scope)
    if scope.topic_id is not None and scope.topic_id in self.failing_topics:
      raise RuntimeError(f"generation failed for {scope.topic_id}")
    builder = self._results.get(scope.job_type)
    if builder is None:
      return GenerationResult()
    return builder(scope)


def make_settings(**overrides: Any) -> Settings:
  """Settings with test defaults, independent of the process environment."""
  values: dict[str, Any] = {
    "environment": "test",
    "debug": False,
    "allowed_origins": (),
    "log_dir": "logs",
    "log_max_bytes": 1024,
    "log_backup_count": 1,
    "log_http_4xx": False,
    "pg_dsn": None,
    "pg_connect_timeout": 5,
    "queue_url": None,
    "task_service_provider": "local-http",
    "task_secret": None,
    "content_generator_url": None,
    "content_generator_timeout_seconds": 30,
    "reconciler_interval_sec": 120,
    "reconciler_batch_size": 100,
    "stale_claim_sec": 1800,
    "outbox_poll_sec": 5,
    "outbox_batch_size": 10,
    "orchestrator_poll_ms": 3000,
    "orchestrator_k8s_mode": False,
    "orchestrator_lock_id": 1234567890,
    "orchestrator_metrics_port": 9090,
    "orchestrator_status_file": "tmp/orchestrator.status.json",
    "worker_container_image": None,
    "worker_k8s_namespace": "default",
    "worker_heartbeat_ms": 10000,
    "worker_drain_timeout_ms": 30000,
    "worker_poll_ms": 2000,
    "worker_concurrency": 2,
  }
  values.update(overrides)
  return Settings(**values)


class FakeProcess:
  """Stands in for asyncio.subprocess.Process."""

  def __init__(self, pid: int, *, exit_on_sigint: int | None = 0) -> None:
    self.pid = pid
    self.returncode: int | None = None
    self.signals: list[int] = []
    self._exit_on_sigint = exit_on_sigint
    self._exited = asyncio.Event()

  async def wait(self) -> int:
    await self._exited.wait()
    assert self.returncode is not None
    return self.returncode

  def send_signal(self, sig: int) -> None:
    self.signals.append(sig)
    if self._exit_on_sigint is not None:
      self.exit(self._exit_on_sigint)

  def exit(self, code: int) -> None:
    self.returncode = code
    self._exited.set()


class FakeLauncher:
  def __init__(self, *, exit_on_sigint: int | None = 0) -> None:
    self.processes: dict[str, FakeProcess] = {}
    self.failing: set[str] = set()
    self._exit_on_sigint = exit_on_sigint
    self._next_pid = 100

  async def spawn(self, *, worker_type: str, lifecycle_id: str) -> FakeProcess:
    if lifecycle_id in self.failing:
      raise OSError("python not found")
    self._next_pid += 1
    process = FakeProcess(self._next_pid, exit_on_sigint=self._exit_on_sigint)
    self.processes[lifecycle_id] = process
    return process
