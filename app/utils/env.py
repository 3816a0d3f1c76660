"""Optional `.env` support for local runs of the API, orchestrator and workers."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "HYDRATION_ENV_FILE"


def default_env_path() -> Path:
  """Return HYDRATION_ENV_FILE when set, else `.env` at the repository root."""
  configured = os.getenv(ENV_FILE_VARIABLE)
  if configured:
    return Path(configured).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_lines(lines: list[str]) -> dict[str, str]:
  """Parse KEY=VALUE lines; comments, blanks and `export ` prefixes are allowed."""
  values: dict[str, str] = {}
  for raw in lines:
    line = raw.strip().removeprefix("export ").strip()
    if not line or line.startswith("#"):
      continue
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    value = value.strip()
    if value[:1] in {'"', "'"} and value.endswith(value[0]) and len(value) > 1:
      value = value[1:-1]
    values[key] = value
  return values


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Copy a `.env` file into os.environ and return the keys that were applied.

  Orchestrator-spawned workers inherit the environment, so variables already set
  by the parent win unless `override` is true.
  """
  if not path.is_file():
    return {}
  applied: dict[str, str] = {}
  for key, value in parse_env_lines(path.read_text(encoding="utf-8").splitlines()).items():
    if override or key not in os.environ:
      os.environ[key] = value
      applied[key] = value
  return applied
