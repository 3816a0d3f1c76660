"""Run one registered job once: `python -m app.jobs <name>` for external cron callers."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from app.config import get_settings
from app.core.database import dispose_db_engine
from app.core.logging import initialize_logging
from app.jobs.definitions import build_job_runtime

logger = logging.getLogger("app.jobs")


async def _run(name: str) -> int:
  settings = get_settings()
  initialize_logging(settings, process_name="jobs")
  runtime = build_job_runtime(settings)
  job = runtime.registry.get(name)
  if job is None:
    known = ", ".join(item.name for item in runtime.registry.list_jobs())
    logger.error("Unknown job %s (registered: %s)", name, known)
    return 2
  try:
    outcome = await runtime.runner.run(job)
  finally:
    await dispose_db_engine()
  logger.info("Job %s finished with %s", name, outcome.status)
  return 0 if outcome.status in {"SUCCESS", "SKIPPED"} else 1


def main(argv: list[str] | None = None) -> int:
  parser = argparse.ArgumentParser(prog="python -m app.jobs", description="Run one scheduled job once.")
  parser.add_argument("name", help="Registered job name, e.g. hydration_reconciler")
  args = parser.parse_args(argv)
  return asyncio.run(_run(args.name))


if __name__ == "__main__":
  sys.exit(main())
