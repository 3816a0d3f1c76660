"""Process-wide logging for the admin API, the orchestrator, workers and one-shot jobs.

Every process logs to stdout and to its own rotating file. Each record carries a
process tag (e.g. `worker:wl-3`) because the orchestrator and the workers it
spawns usually share a terminal or a log collector.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from app.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(process_tag)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
TRACEBACK_TAIL_LINES = 5
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")

_log_path: Path | None = None


class ProcessTagFilter(logging.Filter):
  def __init__(self, tag: str) -> None:
    super().__init__()
    self.tag = tag

  def filter(self, record: logging.LogRecord) -> bool:
    record.process_tag = self.tag
    return True


class ShortTracebackFormatter(logging.Formatter):
  """Console formatter that keeps the exception header and the innermost frames."""

  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:  # noqa: N802
    lines = traceback.format_exception(*ei)
    if len(lines) <= TRACEBACK_TAIL_LINES + 1:
      return "".join(lines)
    return "".join([lines[0], "    ...\n", *lines[-TRACEBACK_TAIL_LINES:]])


def _log_dir(settings: Settings) -> Path:
  path = Path(settings.log_dir)
  if not path.is_absolute():
    path = Path(__file__).resolve().parents[2] / path
  try:
    path.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Cannot create log directory {path}: {exc}") from exc
  return path


def initialize_logging(settings: Settings, process_name: str = "service", *, tag: str | None = None) -> Path:
  """Configure root logging once per process and return the log file path.

  `process_name` names the log file; `tag` (default: the process name) is
  written on every line.
  """
  global _log_path
  if _log_path is not None:
    return _log_path

  tag_filter = ProcessTagFilter(tag or process_name)
  file_stem = (tag or process_name).replace(":", "_")
  log_path = _log_dir(settings) / f"{file_stem}_{time.strftime('%Y%m%d_%H%M%S')}.log"

  console = logging.StreamHandler(sys.stdout)
  console.setFormatter(ShortTracebackFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  rotating = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count)
  rotating.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  handlers: list[logging.Handler] = [console, rotating]
  for handler in handlers:
    handler.addFilter(tag_filter)

  logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO, handlers=handlers, force=True)
  # uvicorn installs its own handlers; route it through ours instead.
  for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    uvicorn_logger = logging.getLogger(name)
    uvicorn_logger.handlers = list(handlers)
    uvicorn_logger.propagate = False
  for name in QUIET_LOGGERS:
    logging.getLogger(name).setLevel(logging.WARNING)

  _log_path = log_path
  logging.getLogger(__name__).info("Logging initialized for %s; writing to %s", tag or process_name, log_path)
  return log_path
