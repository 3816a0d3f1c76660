"""Postgres-backed repository for hydration job trees using SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import require_session_factory
from app.jobs.models import CHILD_LEVELS, LEVEL_ROOT, OPEN_STATUSES, TERMINAL_STATUSES, ChildJobSpec, HydrationJobRecord, JobStatus, LevelCounters, LevelStatusCounts
from app.schema.hydration import HydrationJob, HydrationJobEvent, HydrationOutbox
from app.storage.hydration_repo import HydrationJobNotFoundError, HydrationJobsRepository, InvalidJobTransitionError, JobEventRecord
from app.utils.ids import generate_job_id


def _now() -> datetime:
  return datetime.now(UTC)


def outbox_payload(job_id: str, job_type: str) -> dict[str, Any]:
  """Build the queue message that tells a worker which job to process."""
  return {"type": job_type.upper(), "payload": {"jobId": job_id}}


class PostgresHydrationJobsRepository(HydrationJobsRepository):
  """Persist hydration jobs, their events and outbox rows to Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = require_session_factory(session_factory)

  async def create_root_job(self, record: HydrationJobRecord, *, queue: str) -> HydrationJobRecord:
    async with self._session_factory() as session:
      row = HydrationJob(
        id=record.id,
        root_job_id=None,
        parent_job_id=None,
        hierarchy_level=LEVEL_ROOT,
        job_type=record.job_type,
        fanout_key=None,
        subject_id=record.subject_id,
        language=record.language,
        board=record.board,
        grade=record.grade,
        subject_code=record.subject_code,
        status=record.status,
        attempts=0,
        content_ready=False,
        input_params=record.input_params,
        estimated_cost_usd=record.estimated_cost_usd,
        cost_usd=0,
        estimated_duration_mins=record.estimated_duration_mins,
        **_counter_columns(record.counters),
      )
      session.add(row)
      # The job row and its queue message commit together so neither can exist alone.
      session.add(HydrationOutbox(queue=queue, payload_json=outbox_payload(record.id, record.job_type), attempts=0))
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def get_job(self, job_id: str) -> HydrationJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(HydrationJob, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def list_open_roots(self, *, limit: int) -> list[HydrationJobRecord]:
    async with self._session_factory() as session:
      stmt = select(HydrationJob).where(HydrationJob.hierarchy_level == LEVEL_ROOT, HydrationJob.status.in_(tuple(OPEN_STATUSES))).order_by(HydrationJob.created_at.asc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def list_jobs(self, *, root_job_id: str, hierarchy_level: int, status: JobStatus | None = None) -> list[HydrationJobRecord]:
    async with self._session_factory() as session:
      stmt = select(HydrationJob).where(HydrationJob.root_job_id == root_job_id, HydrationJob.hierarchy_level == hierarchy_level)
      if status is not None:
        stmt = stmt.where(HydrationJob.status == status)
      stmt = stmt.order_by(HydrationJob.created_at.asc(), HydrationJob.id.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def count_by_status(self, *, root_job_id: str, hierarchy_level: int) -> LevelStatusCounts:
    async with self._session_factory() as session:
      stmt = select(HydrationJob.status, func.count()).where(HydrationJob.root_job_id == root_job_id, HydrationJob.hierarchy_level == hierarchy_level).group_by(HydrationJob.status)
      rows = (await session.execute(stmt)).all()
      return LevelStatusCounts(hierarchy_level=hierarchy_level, counts={str(status): int(count) for status, count in rows})

  async def insert_children_if_absent(self, *, root: HydrationJobRecord, specs: list[ChildJobSpec], queue: str) -> list[HydrationJobRecord]:
    if not specs:
      return []
    values = [
      {
        "id": generate_job_id(),
        "root_job_id": root.id,
        "parent_job_id": spec.parent_job_id,
        "hierarchy_level": spec.hierarchy_level,
        "job_type": spec.job_type,
        "fanout_key": spec.fanout_key,
        "subject_id": spec.subject_id or root.subject_id,
        "chapter_id": spec.chapter_id,
        "topic_id": spec.topic_id,
        "language": root.language,
        "difficulty": spec.difficulty,
        "board": root.board,
        "grade": root.grade,
        "subject_code": root.subject_code,
        "status": "pending",
        "attempts": 0,
        "content_ready": False,
        "input_params": {"options": root.input_params.get("options", {})},
        "cost_usd": 0,
      }
      for spec in specs
    ]
    async with self._session_factory() as session:
      # Rows that already exist for (root, level, fanout_key) are skipped by the unique constraint.
      stmt = insert(HydrationJob).values(values).on_conflict_do_nothing(constraint="ux_hydration_jobs_root_level_fanout").returning(HydrationJob.id)
      created_ids = [str(job_id) for job_id in (await session.execute(stmt)).scalars().all()]
      job_types = {str(value["id"]): str(value["job_type"]) for value in values}
      for job_id in created_ids:
        session.add(HydrationOutbox(queue=queue, payload_json=outbox_payload(job_id, job_types[job_id]), attempts=0))
      await session.commit()
      if not created_ids:
        return []
      rows = (await session.execute(select(HydrationJob).where(HydrationJob.id.in_(created_ids)).order_by(HydrationJob.fanout_key.asc()))).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def update_job(self, job_id: str, *, status: JobStatus | None = None, counters: LevelCounters | None = None, cost_usd: float | None = None, started_at: datetime | None = None, completed_at: datetime | None = None) -> HydrationJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(HydrationJob, job_id)
      if row is None:
        return None
      if status is not None:
        row.status = status
      if counters is not None:
        for column, value in _counter_columns(counters).items():
          setattr(row, column, value)
      if cost_usd is not None:
        row.cost_usd = cost_usd
      if started_at is not None:
        row.started_at = started_at
      if completed_at is not None:
        row.completed_at = completed_at
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def complete_root_if_settled(self, root_job_id: str, *, completed_at: datetime) -> bool:
    async with self._session_factory() as session:
      # The root row lock serialises this check with reset_failed_job, which locks the root too.
      root = await session.get(HydrationJob, root_job_id, with_for_update=True)
      if root is None or root.status not in OPEN_STATUSES:
        await session.rollback()
        return False
      open_children = await session.scalar(select(func.count()).select_from(HydrationJob).where(HydrationJob.root_job_id == root_job_id, HydrationJob.status.in_(OPEN_STATUSES)))
      if open_children:
        await session.rollback()
        return False
      root.status = "completed"
      root.completed_at = completed_at
      session.add(root)
      await session.commit()
      return True

  async def sum_descendant_cost(self, root_job_id: str) -> float:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.coalesce(func.sum(HydrationJob.cost_usd), 0)).where(HydrationJob.root_job_id == root_job_id))
      return float(total or 0)

  async def claim_job(self, job_id: str) -> HydrationJobRecord | None:
    now = _now()
    async with self._session_factory() as session:
      # A conditional UPDATE keeps the pending->running transition atomic across workers.
      stmt = (
        update(HydrationJob)
        .where(HydrationJob.id == job_id, HydrationJob.status == "pending", HydrationJob.hierarchy_level != LEVEL_ROOT)
        .values(status="running", locked_at=now, attempts=HydrationJob.attempts + 1, started_at=func.coalesce(HydrationJob.started_at, now))
        .returning(HydrationJob)
        .execution_options(synchronize_session=False)
      )
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      if row is None:
        return None
      return self._model_to_record(row)

  async def claim_next(self, *, job_types: tuple[str, ...] | None = None) -> HydrationJobRecord | None:
    now = _now()
    async with self._session_factory() as session:
      stmt = select(HydrationJob).where(HydrationJob.status == "pending", HydrationJob.hierarchy_level.in_(CHILD_LEVELS))
      if job_types:
        stmt = stmt.where(HydrationJob.job_type.in_(job_types))
      stmt = stmt.order_by(HydrationJob.created_at.asc()).limit(1).with_for_update(skip_locked=True)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      row.status = "running"
      row.locked_at = now
      row.attempts = int(row.attempts or 0) + 1
      if row.started_at is None:
        row.started_at = now
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def complete_job(self, job_id: str, *, result_json: dict[str, Any] | None = None, cost_usd: float = 0.0) -> HydrationJobRecord | None:
    return await self._finish(job_id, status="completed", result_json=result_json, cost_usd=cost_usd, error=None)

  async def fail_job(self, job_id: str, *, error: str) -> HydrationJobRecord | None:
    return await self._finish(job_id, status="failed", result_json=None, cost_usd=None, error=error)

  async def _finish(self, job_id: str, *, status: JobStatus, result_json: dict[str, Any] | None, cost_usd: float | None, error: str | None) -> HydrationJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(HydrationJob, job_id, with_for_update=True)
      if row is None:
        return None
      if row.status != "running":
        raise InvalidJobTransitionError(f"Job {job_id} is {row.status}, expected running.")
      row.status = status
      row.completed_at = _now()
      row.locked_at = None
      if result_json is not None:
        row.result_json = result_json
      if cost_usd is not None:
        row.cost_usd = cost_usd
      if status == "completed":
        row.content_ready = True
        row.last_error = None
      else:
        row.last_error = error
      session.add(row)
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def mark_content_ready(self, job_id: str) -> None:
    async with self._session_factory() as session:
      await session.execute(update(HydrationJob).where(HydrationJob.id == job_id).values(content_ready=True).execution_options(synchronize_session=False))
      await session.commit()

  async def reset_failed_job(self, job_id: str, *, queue: str) -> HydrationJobRecord:
    async with self._session_factory() as session:
      row = await session.get(HydrationJob, job_id, with_for_update=True)
      if row is None:
        raise HydrationJobNotFoundError(job_id)
      if row.status != "failed":
        raise InvalidJobTransitionError(f"Only failed jobs can be retried (job {job_id} is {row.status}).")
      row.status = "pending"
      row.attempts = 0
      row.last_error = None
      row.locked_at = None
      row.completed_at = None
      session.add(row)
      session.add(HydrationOutbox(queue=queue, payload_json=outbox_payload(row.id, row.job_type), attempts=0))
      # A finished root has to be reopened or the reconciler never looks at it again.
      if row.root_job_id is not None:
        root = await session.get(HydrationJob, row.root_job_id, with_for_update=True)
        if root is not None and root.status in TERMINAL_STATUSES:
          root.status = "running"
          root.completed_at = None
          session.add(root)
      await session.commit()
      await session.refresh(row)
      return self._model_to_record(row)

  async def release_stale_claims(self, *, claimed_before: datetime, queue: str) -> list[HydrationJobRecord]:
    async with self._session_factory() as session:
      stmt = (
        update(HydrationJob)
        .where(HydrationJob.status == "running", HydrationJob.hierarchy_level.in_(CHILD_LEVELS), HydrationJob.locked_at < claimed_before)
        .values(status="pending", locked_at=None)
        .returning(HydrationJob)
        .execution_options(synchronize_session=False)
      )
      rows = (await session.execute(stmt)).scalars().all()
      records = [self._model_to_record(row) for row in rows]
      for record in records:
        session.add(HydrationOutbox(queue=queue, payload_json=outbox_payload(record.id, record.job_type), attempts=0))
      await session.commit()
      return records

  async def list_roots(self, *, status: JobStatus | None, limit: int, offset: int) -> tuple[list[HydrationJobRecord], int]:
    async with self._session_factory() as session:
      filters = [HydrationJob.hierarchy_level == LEVEL_ROOT]
      if status:
        filters.append(HydrationJob.status == status)
      total = await session.scalar(select(func.count()).select_from(HydrationJob).where(*filters))
      stmt = select(HydrationJob).where(*filters).order_by(HydrationJob.created_at.desc()).limit(limit).offset(offset)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows], int(total or 0)

  async def list_failed_jobs(self, root_job_id: str) -> list[HydrationJobRecord]:
    async with self._session_factory() as session:
      stmt = select(HydrationJob).where(HydrationJob.root_job_id == root_job_id, HydrationJob.status == "failed").order_by(HydrationJob.created_at.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def summarize_children(self, root_job_id: str) -> dict[str, dict[str, int]]:
    async with self._session_factory() as session:
      stmt = select(HydrationJob.job_type, HydrationJob.status, func.count()).where(HydrationJob.root_job_id == root_job_id).group_by(HydrationJob.job_type, HydrationJob.status)
      summary: dict[str, dict[str, int]] = {}
      for job_type, status, count in (await session.execute(stmt)).all():
        summary.setdefault(str(job_type or "unknown"), {})[str(status)] = int(count)
      return summary

  async def count_content_ready(self, root_job_id: str) -> int:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.count()).select_from(HydrationJob).where(HydrationJob.root_job_id == root_job_id, HydrationJob.content_ready.is_(True)))
      return int(total or 0)

  async def append_event(self, *, job_id: str, root_job_id: str, event_type: str, message: str, payload_json: dict[str, Any] | None = None) -> None:
    async with self._session_factory() as session:
      session.add(HydrationJobEvent(job_id=job_id, root_job_id=root_job_id, event_type=event_type, message=message, payload_json=payload_json))
      await session.commit()

  async def list_events(self, *, root_job_id: str, limit: int = 20) -> list[JobEventRecord]:
    async with self._session_factory() as session:
      stmt = select(HydrationJobEvent).where(HydrationJobEvent.root_job_id == root_job_id).order_by(HydrationJobEvent.created_at.desc(), HydrationJobEvent.id.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [JobEventRecord(job_id=row.job_id, event_type=row.event_type, message=row.message, created_at=row.created_at, payload_json=row.payload_json) for row in reversed(rows)]

  def _model_to_record(self, row: HydrationJob) -> HydrationJobRecord:
    return HydrationJobRecord(
      id=row.id,
      root_job_id=row.root_job_id,
      parent_job_id=row.parent_job_id,
      hierarchy_level=int(row.hierarchy_level),
      job_type=row.job_type,
      fanout_key=row.fanout_key,
      subject_id=row.subject_id,
      chapter_id=row.chapter_id,
      topic_id=row.topic_id,
      language=row.language,
      difficulty=row.difficulty,
      board=row.board,
      grade=row.grade,
      subject_code=row.subject_code,
      status=row.status,  # type: ignore[arg-type]
      attempts=int(row.attempts or 0),
      locked_at=row.locked_at,
      content_ready=bool(row.content_ready),
      input_params=dict(row.input_params or {}),
      result_json=row.result_json,
      last_error=row.last_error,
      counters=LevelCounters(
        chapters_expected=int(row.chapters_expected or 0),
        chapters_completed=int(row.chapters_completed or 0),
        topics_expected=int(row.topics_expected or 0),
        topics_completed=int(row.topics_completed or 0),
        notes_expected=int(row.notes_expected or 0),
        notes_completed=int(row.notes_completed or 0),
        questions_expected=int(row.questions_expected or 0),
        questions_completed=int(row.questions_completed or 0),
      ),
      estimated_cost_usd=float(row.estimated_cost_usd) if row.estimated_cost_usd is not None else None,
      cost_usd=float(row.cost_usd or 0),
      estimated_duration_mins=row.estimated_duration_mins,
      created_at=row.created_at,
      started_at=row.started_at,
      completed_at=row.completed_at,
    )


def _counter_columns(counters: LevelCounters) -> dict[str, int]:
  return {
    "chapters_expected": counters.chapters_expected,
    "chapters_completed": counters.chapters_completed,
    "topics_expected": counters.topics_expected,
    "topics_completed": counters.topics_completed,
    "notes_expected": counters.notes_expected,
    "notes_completed": counters.notes_completed,
    "questions_expected": counters.questions_expected,
    "questions_completed": counters.questions_completed,
  }
