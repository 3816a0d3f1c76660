"""On-disk liveness record for external probes. Writes are best-effort."""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import msgspec

logger = logging.getLogger(__name__)


class OrchestratorStatus(msgspec.Struct, rename="camel"):
  pid: int
  started_at: str
  last_heartbeat: str
  host: str
  mode: str


class StatusFileWriter:
  def __init__(self, path: str | Path, *, mode: str, clock: Callable[[], datetime] | None = None) -> None:
    self._path = Path(path)
    self._mode = mode
    self._clock = clock or (lambda: datetime.now(UTC))
    self._started_at = self._clock().isoformat()

  @property
  def path(self) -> Path:
    return self._path

  def write(self) -> bool:
    """Rewrite the file; never raises."""
    status = OrchestratorStatus(pid=os.getpid(), started_at=self._started_at, last_heartbeat=self._clock().isoformat(), host=socket.gethostname(), mode=self._mode)
    try:
      self._path.parent.mkdir(parents=True, exist_ok=True)
      tmp_path = self._path.with_name(f"{self._path.name}.tmp")
      tmp_path.write_bytes(msgspec.json.encode(status))
      tmp_path.replace(self._path)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to write orchestrator status file %s", self._path, exc_info=True)
      return False
    return True


def read_status_file(path: str | Path) -> dict[str, Any] | None:
  try:
    return msgspec.json.decode(Path(path).read_bytes())
  except FileNotFoundError:
    return None
  except (OSError, msgspec.DecodeError):
    logger.warning("Unreadable orchestrator status file %s", path, exc_info=True)
    return None
