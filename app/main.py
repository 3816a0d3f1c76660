"""Admin API for hydration trees and worker lifecycle rows, plus the internal task endpoint."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import hydration, tasks, workers
from app.config import get_settings
from app.core.exceptions import register_exception_handlers
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="Content Hydration", lifespan=lifespan, docs_url=None, redoc_url=None)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=False, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization", "x-admin-user"])
app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  return {"status": "ok", "version": "0.1.0"}


app.include_router(hydration.router, prefix="/admin/hydrate-all", tags=["hydration"])
app.include_router(workers.router, prefix="/admin/workers", tags=["workers"])
app.include_router(tasks.router, prefix="/internal", tags=["tasks"])
