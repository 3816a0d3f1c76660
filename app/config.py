"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings shared by the API service, orchestrator and workers."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  queue_url: str | None
  task_service_provider: str
  task_secret: str | None
  content_generator_url: str | None
  content_generator_timeout_seconds: int
  reconciler_interval_sec: int
  reconciler_batch_size: int
  stale_claim_sec: int
  outbox_poll_sec: int
  outbox_batch_size: int
  orchestrator_poll_ms: int
  orchestrator_k8s_mode: bool
  orchestrator_lock_id: int
  orchestrator_metrics_port: int
  orchestrator_status_file: str
  worker_container_image: str | None
  worker_k8s_namespace: str
  worker_heartbeat_ms: int
  worker_drain_timeout_ms: int
  worker_poll_ms: int
  worker_concurrency: int


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  # The admin API is usually called server-to-server, so CORS stays closed unless configured.
  if not raw:
    return ()

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("HYDRATION_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_positive_int(name: str, default: int) -> int:
  raw = os.getenv(name)
  if raw is None or raw.strip() == "":
    return default
  try:
    value = int(raw)
  except ValueError as exc:
    raise ValueError(f"{name} must be an integer.") from exc
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _resolve_pg_dsn() -> str | None:
  # DATABASE_URL is accepted for parity with hosted Postgres providers.
  return _optional_str(os.getenv("HYDRATION_PG_DSN")) or _optional_str(os.getenv("DATABASE_URL"))


def _resolve_queue_url() -> str | None:
  return _optional_str(os.getenv("HYDRATION_QUEUE_URL")) or _optional_str(os.getenv("REDIS_URL"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("HYDRATION_ENV", "development").lower()

  # Toggle verbose error output and SQL echo in non-production environments.
  debug = _parse_bool(os.getenv("HYDRATION_DEBUG"))

  log_max_bytes = _parse_positive_int("HYDRATION_LOG_MAX_BYTES", 5242880)  # 5MB default
  log_backup_count = int(os.getenv("HYDRATION_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("HYDRATION_LOG_BACKUP_COUNT must be zero or a positive integer.")

  task_service_provider = (os.getenv("HYDRATION_TASK_PROVIDER") or "local-http").strip().lower()
  if task_service_provider not in {"local-http"}:
    raise ValueError("HYDRATION_TASK_PROVIDER must be 'local-http'.")

  orchestrator_lock_id = int(os.getenv("ORCHESTRATOR_LOCK_ID", "1234567890"))

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("HYDRATION_ALLOWED_ORIGINS")),
    log_dir=(os.getenv("HYDRATION_LOG_DIR") or "logs").strip(),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("HYDRATION_LOG_HTTP_4XX")),
    pg_dsn=_resolve_pg_dsn(),
    pg_connect_timeout=_parse_positive_int("HYDRATION_PG_CONNECT_TIMEOUT", 5),
    queue_url=_resolve_queue_url(),
    task_service_provider=task_service_provider,
    task_secret=_optional_str(os.getenv("HYDRATION_TASK_SECRET")),
    content_generator_url=_optional_str(os.getenv("CONTENT_GENERATOR_URL")),
    content_generator_timeout_seconds=_parse_positive_int("CONTENT_GENERATOR_TIMEOUT_SECONDS", 300),
    reconciler_interval_sec=_parse_positive_int("HYDRATION_RECONCILER_INTERVAL_SEC", 120),
    reconciler_batch_size=_parse_positive_int("HYDRATION_RECONCILER_BATCH_SIZE", 100),
    stale_claim_sec=_parse_positive_int("HYDRATION_STALE_CLAIM_SEC", 1800),
    outbox_poll_sec=_parse_positive_int("OUTBOX_POLL_SEC", 5),
    outbox_batch_size=_parse_positive_int("OUTBOX_BATCH_SIZE", 10),
    orchestrator_poll_ms=_parse_positive_int("ORCHESTRATOR_POLL_MS", 3000),
    orchestrator_k8s_mode=_parse_bool(os.getenv("ORCHESTRATOR_K8S_MODE")),
    orchestrator_lock_id=orchestrator_lock_id,
    orchestrator_metrics_port=_parse_positive_int("ORCHESTRATOR_METRICS_PORT", 9090),
    orchestrator_status_file=(os.getenv("ORCHESTRATOR_STATUS_FILE") or "tmp/orchestrator.status.json").strip(),
    worker_container_image=_optional_str(os.getenv("WORKER_CONTAINER_IMAGE")),
    worker_k8s_namespace=(os.getenv("WORKER_K8S_NAMESPACE") or "default").strip(),
    worker_heartbeat_ms=_parse_positive_int("WORKER_HEARTBEAT_MS", 10000),
    worker_drain_timeout_ms=_parse_positive_int("WORKER_DRAIN_TIMEOUT_MS", 30000),
    worker_poll_ms=_parse_positive_int("WORKER_POLL_MS", 2000),
    worker_concurrency=_parse_positive_int("WORKER_CONCURRENCY", 2),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings needed to open a database connection."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("HYDRATION_DEBUG")), pg_dsn=_resolve_pg_dsn(), pg_connect_timeout=_parse_positive_int("HYDRATION_PG_CONNECT_TIMEOUT", 5))
