"""Identifier utilities."""

from __future__ import annotations

import secrets
import string
import uuid


def generate_job_id() -> str:
  """Return a new hydration job identifier."""
  return str(uuid.uuid4())


def generate_lifecycle_id() -> str:
  """Return a new worker lifecycle identifier."""
  return str(uuid.uuid4())


def generate_nanoid(size: int = 16) -> str:
  """Return a short non-sequential id suitable for public references."""
  alphabet = string.ascii_letters + string.digits
  return "".join(secrets.choice(alphabet) for _ in range(size))


def generate_trace_id() -> str:
  """Return a trace id that ties a submission to its log lines."""
  return f"hydrate-{generate_nanoid(16)}"
