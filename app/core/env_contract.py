"""Runtime environment contract checks for the API service, orchestrator and workers.

Every process entrypoint validates against the same registry before it touches
the database. Secret values are never written to the startup log.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

EnvTarget = Literal["service", "orchestrator", "worker"]
EnvValidator = Callable[[str, dict[str, str]], str | None]

ALL_TARGETS: tuple[EnvTarget, ...] = ("service", "orchestrator", "worker")


@dataclass(frozen=True)
class EnvVarDefinition:
  """One environment variable: which processes read it and how it is checked."""

  name: str
  required: bool
  secret: bool
  used_by: tuple[EnvTarget, ...]
  validator: EnvValidator | None = None
  aliases: tuple[str, ...] = ()


class EnvContractError(RuntimeError):
  """Raised when a process starts with missing or malformed configuration."""


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Read a 1/true/yes/on style flag."""
  if raw is None:
    return default

  return raw.strip().lower() in {"1", "true", "yes", "on"}


def _k8s_mode(env_map: dict[str, str]) -> bool:
  return _parse_bool(env_map.get("ORCHESTRATOR_K8S_MODE"))


def _validate_positive_int(value: str, _: dict[str, str]) -> str | None:
  """Ensure numeric knobs are positive integers."""
  try:
    parsed = int(value)
  except ValueError:
    return "must be an integer."

  if parsed <= 0:
    return "must be a positive integer."

  return None


def _validate_integer(value: str, _: dict[str, str]) -> str | None:
  try:
    int(value)
  except ValueError:
    return "must be an integer."

  return None


def _validate_dsn(value: str, _: dict[str, str]) -> str | None:
  """Only Postgres DSNs are supported by the async engine."""
  if not value.startswith(("postgresql://", "postgresql+asyncpg://", "postgres://")):
    return "must be a postgresql:// connection string."

  return None


REQUIRED_ENV_REGISTRY: tuple[EnvVarDefinition, ...] = (
  EnvVarDefinition(name="HYDRATION_PG_DSN", required=True, secret=True, used_by=ALL_TARGETS, validator=_validate_dsn, aliases=("DATABASE_URL",)),
  EnvVarDefinition(name="HYDRATION_QUEUE_URL", required=True, secret=True, used_by=("orchestrator",), aliases=("REDIS_URL",)),
  EnvVarDefinition(name="HYDRATION_TASK_SECRET", required=False, secret=True, used_by=("service", "orchestrator")),
  EnvVarDefinition(name="CONTENT_GENERATOR_URL", required=False, secret=False, used_by=("service", "worker")),
  EnvVarDefinition(name="ORCHESTRATOR_POLL_MS", required=False, secret=False, used_by=("orchestrator",), validator=_validate_positive_int),
  EnvVarDefinition(name="ORCHESTRATOR_K8S_MODE", required=False, secret=False, used_by=("orchestrator",)),
  EnvVarDefinition(name="ORCHESTRATOR_LOCK_ID", required=False, secret=False, used_by=("orchestrator",), validator=_validate_integer),
  EnvVarDefinition(name="WORKER_CONTAINER_IMAGE", required=False, secret=False, used_by=("orchestrator",)),
  EnvVarDefinition(name="WORKER_K8S_NAMESPACE", required=False, secret=False, used_by=("orchestrator",)),
  EnvVarDefinition(name="WORKER_HEARTBEAT_MS", required=False, secret=False, used_by=("worker",), validator=_validate_positive_int),
)


def _iter_applicable_definitions(*, target: EnvTarget) -> tuple[EnvVarDefinition, ...]:
  """Registry entries read by one process."""
  return tuple(definition for definition in REQUIRED_ENV_REGISTRY if target in definition.used_by)


def _resolve_value(*, definition: EnvVarDefinition, env_map: dict[str, str]) -> str:
  """Resolve a value, falling back to its compatibility aliases."""
  raw = env_map.get(definition.name)
  if raw:
    return raw

  for alias in definition.aliases:
    alias_value = env_map.get(alias)
    if alias_value:
      return alias_value

  return raw or ""


def _conditional_errors(*, target: EnvTarget, env_map: dict[str, str]) -> list[str]:
  """Rules that depend on the orchestrator mode."""
  errors: list[str] = []
  if target != "orchestrator":
    return errors

  if _k8s_mode(env_map):
    if env_map.get("WORKER_CONTAINER_IMAGE", "").strip() == "":
      errors.append("WORKER_CONTAINER_IMAGE: required when ORCHESTRATOR_K8S_MODE is enabled.")

  return errors


def list_required_env_names(*, target: EnvTarget) -> tuple[str, ...]:
  """Names a deployment must always set for a target."""
  return tuple(definition.name for definition in _iter_applicable_definitions(target=target) if definition.required)


def validate_env_values(*, target: EnvTarget, env_map: dict[str, str]) -> list[str]:
  """Return every violation found in an env map for one target."""
  errors: list[str] = []
  k8s_mode = _k8s_mode(env_map)
  for definition in _iter_applicable_definitions(target=target):
    value = _resolve_value(definition=definition, env_map=env_map)
    required = definition.required
    # The queue only feeds locally supervised workers; cluster Jobs pull their own work.
    if definition.name == "HYDRATION_QUEUE_URL" and k8s_mode:
      required = False

    if required and value.strip() == "":
      errors.append(f"{definition.name}: not set.")
      continue

    if definition.validator and value.strip() != "":
      validation_error = definition.validator(value, env_map)
      if validation_error:
        errors.append(f"{definition.name}: {validation_error}")

  errors.extend(_conditional_errors(target=target, env_map=env_map))
  return errors


def validate_runtime_env_or_raise(*, logger: logging.Logger, target: EnvTarget, enforce: bool | None = None) -> None:
  """Validate and log runtime env values using the centralized contract.

  The orchestrator and workers always enforce; the API service enforces only when
  HYDRATION_ENV_CONTRACT_ENFORCE is set so image smoke tests can boot without config.
  """
  if enforce is None:
    enforce = _parse_bool(os.getenv("HYDRATION_ENV_CONTRACT_ENFORCE"), default=False)

  env_map = dict(os.environ)
  applicable_definitions = _iter_applicable_definitions(target=target)
  for definition in applicable_definitions:
    value = _resolve_value(definition=definition, env_map=env_map)
    if definition.secret and value != "":
      logger.info("env %s=<redacted>", definition.name)
    elif value == "":
      logger.info("env %s=<unset>", definition.name)
    else:
      logger.info("env %s=%s", definition.name, value)

  errors = validate_env_values(target=target, env_map=env_map)

  if not errors:
    logger.info("Environment ok for %s (%d keys checked)", target, len(applicable_definitions))
    return

  message = f"Environment invalid for {target}:\n  " + "\n  ".join(errors)
  if enforce:
    logger.error(message)
    raise EnvContractError(message)

  logger.warning("Environment contract not enforced (HYDRATION_ENV_CONTRACT_ENFORCE=0)")
  logger.warning(message)
