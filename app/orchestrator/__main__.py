"""Orchestrator entrypoint: `python -m app.orchestrator`."""

from __future__ import annotations

import asyncio
import logging
import sys

from app.config import Settings, get_settings
from app.core.database import dispose_db_engine, get_db_engine
from app.core.env_contract import EnvContractError, validate_runtime_env_or_raise
from app.core.logging import initialize_logging
from app.jobs.definitions import build_job_runtime
from app.orchestrator.health import build_health_app, build_health_server
from app.orchestrator.k8s import KubernetesReconciler, build_cluster_launcher
from app.orchestrator.leader import AdvisoryLeaderLock
from app.orchestrator.main import EXIT_CONFIG_ERROR, KubernetesMode, LocalMode, Orchestrator, install_signal_handlers
from app.orchestrator.status_file import StatusFileWriter
from app.orchestrator.supervisor import LocalSupervisor, SubprocessLauncher
from app.storage.factory import _get_audit_repo, _get_worker_lifecycle_repo
from app.telemetry.audit import AuditLogger

logger = logging.getLogger("app.orchestrator")


def _build_orchestrator(settings: Settings) -> Orchestrator:
  lifecycle_repo = _get_worker_lifecycle_repo(settings)
  audit = AuditLogger(_get_audit_repo(settings))
  mode: LocalMode | KubernetesMode
  if settings.orchestrator_k8s_mode:
    engine = get_db_engine()
    if engine is None:
      raise RuntimeError("Database engine is not configured.")
    launcher = build_cluster_launcher(settings)
    mode = KubernetesMode(
      reconciler=KubernetesReconciler(lifecycle_repo, launcher, namespace=settings.worker_k8s_namespace, audit=audit),
      leader=AdvisoryLeaderLock(engine, settings.orchestrator_lock_id),
    )
  else:
    mode = LocalMode(supervisor=LocalSupervisor(lifecycle_repo, SubprocessLauncher(), audit=audit))
  status_writer = StatusFileWriter(settings.orchestrator_status_file, mode="k8s" if settings.orchestrator_k8s_mode else "local")
  health_app = build_health_app(lifecycle_repo, status_path=settings.orchestrator_status_file)
  return Orchestrator(
    settings=settings,
    mode=mode,
    status_writer=status_writer,
    runtime=build_job_runtime(settings),
    health_server=build_health_server(health_app, port=settings.orchestrator_metrics_port),
  )


async def _run(settings: Settings) -> int:
  orchestrator = _build_orchestrator(settings)
  install_signal_handlers(orchestrator)
  try:
    return await orchestrator.run()
  finally:
    await dispose_db_engine()


def main() -> int:
  try:
    settings = get_settings()
  except ValueError as exc:
    logger.error("Invalid configuration; orchestrator refusing to start: %s", exc)
    return EXIT_CONFIG_ERROR
  initialize_logging(settings, process_name="orchestrator")
  try:
    validate_runtime_env_or_raise(logger=logger, target="orchestrator", enforce=True)
  except EnvContractError:
    logger.error("Environment contract failed; orchestrator refusing to start.", exc_info=True)
    return EXIT_CONFIG_ERROR
  return asyncio.run(_run(settings))


if __name__ == "__main__":
  sys.exit(main())
