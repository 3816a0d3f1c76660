"""Worker entrypoint: `python -m app.worker --type <type> --lifecycleId <id>`."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from app.config import get_settings
from app.core.database import dispose_db_engine
from app.core.env_contract import EnvContractError, validate_runtime_env_or_raise
from app.core.logging import initialize_logging
from app.jobs.dispatch import build_default_registry
from app.jobs.models import HYDRATION_QUEUE
from app.jobs.worker import HydrationJobProcessor
from app.services.content_generator import build_content_generator
from app.storage.factory import _get_catalog_repo, _get_hydration_repo, _get_worker_lifecycle_repo
from app.utils.ids import generate_lifecycle_id
from app.worker.process import EXIT_FAILED, WorkerProcess

logger = logging.getLogger("app.worker")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(prog="python -m app.worker", description="Run a content hydration worker.")
  parser.add_argument("--type", dest="worker_type", default=HYDRATION_QUEUE, help="Worker kind recorded on the lifecycle row.")
  parser.add_argument("--lifecycle-id", "--lifecycleId", dest="lifecycle_id", default=None, help="Lifecycle row to run under; a new one is created when omitted.")
  return parser.parse_args(argv)


async def _run(worker_type: str, lifecycle_id: str) -> int:
  settings = get_settings()
  registry = build_default_registry(_get_catalog_repo(settings), build_content_generator(settings))
  worker = WorkerProcess(
    lifecycle_id=lifecycle_id,
    worker_type=worker_type,
    processor=HydrationJobProcessor(jobs_repo=_get_hydration_repo(settings), registry=registry),
    lifecycle_repo=_get_worker_lifecycle_repo(settings),
    heartbeat_ms=settings.worker_heartbeat_ms,
    poll_ms=settings.worker_poll_ms,
    concurrency=settings.worker_concurrency,
    drain_timeout_ms=settings.worker_drain_timeout_ms,
  )
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, worker.request_drain)
  try:
    return await worker.run()
  finally:
    await dispose_db_engine()


def main(argv: list[str] | None = None) -> int:
  args = _parse_args(argv)
  lifecycle_id = args.lifecycle_id or generate_lifecycle_id()
  try:
    settings = get_settings()
  except ValueError as exc:
    logger.error("Invalid configuration; worker refusing to start: %s", exc)
    return EXIT_FAILED
  initialize_logging(settings, process_name="worker", tag=f"worker:{lifecycle_id}")
  try:
    validate_runtime_env_or_raise(logger=logger, target="worker", enforce=True)
  except EnvContractError:
    logger.error("Environment contract failed; worker refusing to start.", exc_info=True)
    return EXIT_FAILED
  return asyncio.run(_run(args.worker_type, lifecycle_id))


if __name__ == "__main__":
  sys.exit(main())
