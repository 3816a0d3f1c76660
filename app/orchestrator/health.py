"""Metrics and liveness endpoints served next to the orchestrator loop."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from app.orchestrator.status_file import read_status_file
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository
from app.telemetry import metrics

logger = logging.getLogger(__name__)


def build_health_app(repo: WorkerLifecycleRepository, *, status_path: str | Path) -> FastAPI:
  app = FastAPI(title="Hydration orchestrator", docs_url=None, redoc_url=None, openapi_url=None)

  @app.get("/metrics")
  async def metrics_endpoint() -> Response:
    return Response(content=metrics.render_latest(), media_type=CONTENT_TYPE_LATEST)

  @app.get("/health")
  async def health_endpoint() -> JSONResponse:
    try:
      counts = await repo.count_by_status()
    except Exception as exc:  # noqa: BLE001
      logger.error("Health check failed", exc_info=True)
      return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    metrics.set_workers_running(counts.get("RUNNING", 0))
    return JSONResponse(content={"ok": True, "orchestrator": read_status_file(status_path), "workerCounts": counts})

  return app


class EmbeddedServer(uvicorn.Server):
  """uvicorn server that leaves SIGINT and SIGTERM to the orchestrator."""

  @contextlib.contextmanager
  def capture_signals(self) -> Iterator[None]:
    yield

  def install_signal_handlers(self) -> None:
    return None


def build_health_server(app: FastAPI, *, port: int, host: str = "0.0.0.0") -> EmbeddedServer:
  """Return a server to run with `await server.serve()` on the orchestrator loop."""
  config = uvicorn.Config(app, host=host, port=port, log_config=None, lifespan="off", server_header=False)
  return EmbeddedServer(config)
