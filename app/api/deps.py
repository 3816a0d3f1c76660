"""Shared FastAPI dependencies that wire services to their repositories."""

from __future__ import annotations

from fastapi import Depends

from app.config import Settings, get_settings
from app.jobs.dispatch import build_default_registry
from app.jobs.lock import JobLockService
from app.jobs.reconciler import HydrationReconciler
from app.jobs.worker import HydrationJobProcessor
from app.services.content_generator import build_content_generator
from app.services.hydration import HydrationService
from app.services.workers import WorkerAdminService
from app.storage.factory import _get_audit_repo, _get_catalog_repo, _get_hydration_repo, _get_job_lock_repo, _get_worker_lifecycle_repo
from app.telemetry.audit import AuditLogger


def get_hydration_service(settings: Settings = Depends(get_settings)) -> HydrationService:  # noqa: B008
  return HydrationService(jobs_repo=_get_hydration_repo(settings), catalog_repo=_get_catalog_repo(settings), audit=AuditLogger(_get_audit_repo(settings)))


def get_worker_admin_service(settings: Settings = Depends(get_settings)) -> WorkerAdminService:  # noqa: B008
  return WorkerAdminService(_get_worker_lifecycle_repo(settings), AuditLogger(_get_audit_repo(settings)))


def get_job_processor(settings: Settings = Depends(get_settings)) -> HydrationJobProcessor:  # noqa: B008
  registry = build_default_registry(_get_catalog_repo(settings), build_content_generator(settings))
  return HydrationJobProcessor(jobs_repo=_get_hydration_repo(settings), registry=registry)


def get_reconciler(settings: Settings = Depends(get_settings)) -> HydrationReconciler:  # noqa: B008
  lock_service = JobLockService(_get_job_lock_repo(settings))
  return HydrationReconciler(_get_hydration_repo(settings), lock_service=lock_service, batch_size=settings.reconciler_batch_size)
