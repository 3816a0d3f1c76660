from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.dialects import postgresql

from app.jobs.lock import JobLockService
from app.storage.postgres_job_lock_repo import build_acquire_statement
from tests.fakes import BASE_TIME, Clock, InMemoryJobLockRepo


@pytest.mark.anyio
async def test_second_owner_is_skipped_while_lock_is_held(lock_repo: InMemoryJobLockRepo) -> None:
  first = JobLockService(lock_repo, owner="a")
  second = JobLockService(lock_repo, owner="b")

  assert (await first.acquire("reconciler", 60_000)).acquired
  blocked = await second.acquire("reconciler", 60_000)

  assert blocked.skipped
  assert blocked.reason == "locked"


@pytest.mark.anyio
async def test_concurrent_acquire_has_exactly_one_winner(lock_repo: InMemoryJobLockRepo) -> None:
  services = [JobLockService(lock_repo, owner=f"owner-{index}") for index in range(8)]

  results = await asyncio.gather(*(service.acquire("outbox", 30_000) for service in services))

  assert sum(1 for result in results if result.acquired) == 1


@pytest.mark.anyio
async def test_expired_lock_can_be_taken_over(clock: Clock, lock_repo: InMemoryJobLockRepo) -> None:
  first = JobLockService(lock_repo, owner="a")
  second = JobLockService(lock_repo, owner="b")
  await first.acquire("sweep", 1_000)

  clock.advance(seconds=2)

  assert (await second.acquire("sweep", 1_000)).acquired
  assert lock_repo.locks["sweep"][0] == "b"


@pytest.mark.anyio
async def test_acquire_fails_closed_on_storage_error(lock_repo: InMemoryJobLockRepo) -> None:
  lock_repo.fail_acquire = True

  result = await JobLockService(lock_repo, owner="a").acquire("reconciler", 60_000)

  assert not result.acquired
  assert result.reason == "error"


@pytest.mark.anyio
async def test_release_is_idempotent_and_owner_scoped(lock_repo: InMemoryJobLockRepo) -> None:
  holder = JobLockService(lock_repo, owner="a")
  other = JobLockService(lock_repo, owner="b")
  await holder.acquire("reconciler", 60_000)

  # Someone else releasing must not free the holder's lock.
  await other.release("reconciler")
  assert "reconciler" in lock_repo.locks

  await holder.release("reconciler")
  await holder.release("reconciler")
  assert "reconciler" not in lock_repo.locks


@pytest.mark.anyio
async def test_acquire_rejects_non_positive_ttl(lock_repo: InMemoryJobLockRepo) -> None:
  with pytest.raises(ValueError):
    await JobLockService(lock_repo).acquire("reconciler", 0)


def test_default_owner_is_unique_per_service(lock_repo: InMemoryJobLockRepo) -> None:
  assert JobLockService(lock_repo).owner != JobLockService(lock_repo).owner


def test_acquire_statement_is_one_conditional_upsert() -> None:
  stmt = build_acquire_statement(name="reconciler", owner="host:1:abc", now=BASE_TIME, ttl_ms=60_000)

  sql = str(stmt.compile(dialect=postgresql.dialect()))

  assert sql.startswith("INSERT INTO job_locks")
  assert "ON CONFLICT (name) DO UPDATE" in sql
  assert "WHERE job_locks.expires_at <" in sql
  assert "RETURNING job_locks.name" in sql
