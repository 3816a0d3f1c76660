"""Fixtures that run the FastAPI app in-process against in-memory repositories."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_hydration_service, get_worker_admin_service
from app.main import app
from app.services.hydration import HydrationService
from app.services.workers import WorkerAdminService
from app.telemetry.audit import AuditLogger
from tests.fakes import Clock, InMemoryAuditRepo, InMemoryCatalogRepo, InMemoryHydrationJobsRepo, InMemoryWorkerLifecycleRepo


@pytest.fixture
def hydration_service(jobs_repo: InMemoryHydrationJobsRepo, catalog_repo: InMemoryCatalogRepo, audit_repo: InMemoryAuditRepo, clock: Clock) -> HydrationService:
  return HydrationService(jobs_repo=jobs_repo, catalog_repo=catalog_repo, audit=AuditLogger(audit_repo), clock=clock)


@pytest.fixture
def worker_service(lifecycle_repo: InMemoryWorkerLifecycleRepo, audit_repo: InMemoryAuditRepo, clock: Clock) -> WorkerAdminService:
  return WorkerAdminService(lifecycle_repo, AuditLogger(audit_repo), clock=clock)


@pytest.fixture
async def async_client(hydration_service: HydrationService, worker_service: WorkerAdminService):
  app.dependency_overrides[get_hydration_service] = lambda: hydration_service
  app.dependency_overrides[get_worker_admin_service] = lambda: worker_service
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
