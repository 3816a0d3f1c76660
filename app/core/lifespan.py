from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlsplit

from fastapi import FastAPI

from app.config import Settings, get_settings
from app.core.database import dispose_db_engine
from app.core.env_contract import validate_runtime_env_or_raise
from app.core.logging import initialize_logging

logger = logging.getLogger(__name__)


def describe_runtime(settings: Settings) -> dict[str, str]:
  """Summarize which collaborators the admin API can reach, without credentials."""
  database = urlsplit(settings.pg_dsn).hostname if settings.pg_dsn else None
  return {
    "environment": settings.environment,
    "database": database or "<unset>",
    "outboxDelivery": "enabled" if settings.queue_url else "disabled",
    "taskEndpoint": "enabled" if settings.task_secret else "disabled",
    "contentGenerator": "configured" if settings.content_generator_url else "unavailable",
  }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging and check the service env before accepting admin requests."""
  settings = get_settings()
  initialize_logging(settings, process_name="service")
  # Raises EnvContractError; uvicorn reports it and exits before binding.
  validate_runtime_env_or_raise(logger=logger, target="service")
  logger.info("Admin API ready: %s", " ".join(f"{key}={value}" for key, value in describe_runtime(settings).items()))
  try:
    yield
  finally:
    await dispose_db_engine()
