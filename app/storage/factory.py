from app.config import Settings
from app.storage.catalog_repo import CatalogRepository
from app.storage.hydration_repo import HydrationJobsRepository
from app.storage.job_lock_repo import JobLockRepository
from app.storage.outbox_repo import OutboxRepository
from app.storage.postgres_audit_repo import AuditRepository, PostgresAuditRepository
from app.storage.postgres_catalog_repo import PostgresCatalogRepository
from app.storage.postgres_hydration_repo import PostgresHydrationJobsRepository
from app.storage.postgres_job_lock_repo import PostgresJobLockRepository
from app.storage.postgres_outbox_repo import PostgresOutboxRepository
from app.storage.postgres_worker_lifecycle_repo import PostgresWorkerLifecycleRepository
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository


def _require_dsn(settings: Settings) -> None:
  # Enforce Postgres-backed storage for every repository.
  if not settings.pg_dsn:
    raise ValueError("HYDRATION_PG_DSN must be set to enable Postgres persistence.")


def _get_hydration_repo(settings: Settings) -> HydrationJobsRepository:
  """Return the active hydration jobs repository."""
  _require_dsn(settings)
  return PostgresHydrationJobsRepository()


def _get_catalog_repo(settings: Settings) -> CatalogRepository:
  _require_dsn(settings)
  return PostgresCatalogRepository()


def _get_worker_lifecycle_repo(settings: Settings) -> WorkerLifecycleRepository:
  _require_dsn(settings)
  return PostgresWorkerLifecycleRepository()


def _get_outbox_repo(settings: Settings) -> OutboxRepository:
  _require_dsn(settings)
  return PostgresOutboxRepository()


def _get_job_lock_repo(settings: Settings) -> JobLockRepository:
  _require_dsn(settings)
  return PostgresJobLockRepository()


def _get_audit_repo(settings: Settings) -> AuditRepository:
  _require_dsn(settings)
  return PostgresAuditRepository()
