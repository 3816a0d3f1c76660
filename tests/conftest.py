"""Shared fixtures for unit and integration tests."""

from __future__ import annotations

import pytest

from tests.fakes import Clock, InMemoryAuditRepo, InMemoryCatalogRepo, InMemoryHydrationJobsRepo, InMemoryJobLockRepo, InMemoryWorkerLifecycleRepo


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def clock() -> Clock:
  return Clock()


@pytest.fixture
def jobs_repo(clock: Clock) -> InMemoryHydrationJobsRepo:
  return InMemoryHydrationJobsRepo(clock)


@pytest.fixture
def catalog_repo() -> InMemoryCatalogRepo:
  return InMemoryCatalogRepo()


@pytest.fixture
def lifecycle_repo(clock: Clock) -> InMemoryWorkerLifecycleRepo:
  return InMemoryWorkerLifecycleRepo(clock)


@pytest.fixture
def lock_repo(clock: Clock) -> InMemoryJobLockRepo:
  return InMemoryJobLockRepo(clock)


@pytest.fixture
def audit_repo() -> InMemoryAuditRepo:
  return InMemoryAuditRepo()
