"""Process-wide async engine and session factory for the hydration tables."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_database_settings

_ASYNC_DRIVER = "postgresql+asyncpg://"


class Base(DeclarativeBase):
  pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def async_database_url(dsn: str) -> str:
  """Point plain postgres DSNs at the asyncpg driver."""
  for prefix in ("postgresql://", "postgres://"):
    if dsn.startswith(prefix):
      return _ASYNC_DRIVER + dsn[len(prefix) :]
  return dsn


def get_db_engine() -> AsyncEngine | None:
  """Return the shared engine, or None when HYDRATION_PG_DSN is unset."""
  global _engine
  if _engine is None:
    settings = get_database_settings()
    if not settings.pg_dsn:
      return None
    _engine = create_async_engine(async_database_url(settings.pg_dsn), echo=settings.debug, pool_pre_ping=True, connect_args={"timeout": settings.pg_connect_timeout})
  return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession] | None:
  global _session_factory
  if _session_factory is None:
    engine = get_db_engine()
    if engine is not None:
      _session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
  return _session_factory


def require_session_factory(session_factory: async_sessionmaker[AsyncSession] | None = None) -> async_sessionmaker[AsyncSession]:
  """Return the injected factory or the process-wide one, failing when no database is configured."""
  factory = session_factory or get_session_factory()
  if factory is None:
    raise RuntimeError("Database is not configured (HYDRATION_PG_DSN is missing).")
  return factory


async def dispose_db_engine() -> None:
  """Close pooled connections so short-lived processes exit cleanly."""
  global _engine, _session_factory
  engine, _engine, _session_factory = _engine, None, None
  if engine is not None:
    await engine.dispose()
