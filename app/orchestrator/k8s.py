"""Kubernetes mode: one batch/v1 Job per STARTING lifecycle row.

The cluster supervises the Job, so rows go straight to RUNNING and nothing
watches exits locally. The launcher is an injected capability; when the
orchestrator is not running in a cluster the unavailable variant is used and
the caller checks `available`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Protocol

import httpx

from app.config import Settings
from app.storage.worker_lifecycle_repo import WorkerLifecycleRepository
from app.telemetry import metrics
from app.telemetry.audit import AuditLogger

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
JOB_NAME_PREFIX = "hydration-worker-"
# Values the worker process needs; copied from the orchestrator's own environment.
WORKER_ENV_KEYS = (
  "HYDRATION_ENV",
  "HYDRATION_PG_DSN",
  "DATABASE_URL",
  "CONTENT_GENERATOR_URL",
  "CONTENT_GENERATOR_TIMEOUT_SECONDS",
  "WORKER_HEARTBEAT_MS",
  "WORKER_DRAIN_TIMEOUT_MS",
  "WORKER_POLL_MS",
  "WORKER_CONCURRENCY",
)


class ClusterLauncherUnavailableError(RuntimeError):
  """Raised when cluster Jobs are requested but no cluster API is reachable."""


class ClusterJobLauncher(Protocol):
  @property
  def available(self) -> bool: ...

  async def create_job(self, *, lifecycle_id: str, worker_type: str) -> str:
    """Create the Job and return its name."""


class UnavailableClusterLauncher:
  available = False

  def __init__(self, reason: str) -> None:
    self.reason = reason

  async def create_job(self, *, lifecycle_id: str, worker_type: str) -> str:
    raise ClusterLauncherUnavailableError(self.reason)


def job_name_for(lifecycle_id: str) -> str:
  return f"{JOB_NAME_PREFIX}{lifecycle_id}".lower()[:63].rstrip("-")


def build_job_manifest(*, lifecycle_id: str, worker_type: str, image: str, namespace: str, env: dict[str, str]) -> dict[str, Any]:
  """Return the batch/v1 Job body for one worker."""
  name = job_name_for(lifecycle_id)
  labels = {"app": "hydration-worker", "lifecycle-id": lifecycle_id[:63]}
  return {
    "apiVersion": "batch/v1",
    "kind": "Job",
    "metadata": {"name": name, "namespace": namespace, "labels": labels},
    "spec": {
      "backoffLimit": 0,
      "ttlSecondsAfterFinished": 3600,
      "template": {
        "metadata": {"labels": labels},
        "spec": {
          "restartPolicy": "Never",
          "containers": [
            {
              "name": "worker",
              "image": image,
              "command": ["python", "-m", "app.worker", "--type", worker_type, "--lifecycleId", lifecycle_id],
              "env": [{"name": key, "value": value} for key, value in sorted(env.items())],
            }
          ],
        },
      },
    },
  }


class KubernetesJobLauncher:
  """Create worker Jobs through the in-cluster API server."""

  available = True

  def __init__(self, *, image: str, namespace: str, api_url: str, token: str, ca_path: str | None = None, env: dict[str, str] | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._image = image
    self._namespace = namespace
    self._api_url = api_url.rstrip("/")
    self._token = token
    self._verify: str | bool = ca_path or True
    self._env = env or {}
    self._transport = transport

  @property
  def namespace(self) -> str:
    return self._namespace

  async def create_job(self, *, lifecycle_id: str, worker_type: str) -> str:
    manifest = build_job_manifest(lifecycle_id=lifecycle_id, worker_type=worker_type, image=self._image, namespace=self._namespace, env=self._env)
    name = manifest["metadata"]["name"]
    url = f"{self._api_url}/apis/batch/v1/namespaces/{self._namespace}/jobs"
    async with httpx.AsyncClient(transport=self._transport, verify=self._verify, timeout=30.0, trust_env=False) as client:
      response = await client.post(url, json=manifest, headers={"authorization": f"Bearer {self._token}"})
    if response.status_code == httpx.codes.CONFLICT:
      # A previous tick created it but did not get to flip the row.
      logger.info("Job %s already exists", name)
      return name
    if response.is_error:
      logger.error("Cluster API returned %s creating Job %s: %s", response.status_code, name, response.text[:500])
      response.raise_for_status()
    return name


def build_cluster_launcher(settings: Settings, *, service_account_dir: Path = SERVICE_ACCOUNT_DIR) -> ClusterJobLauncher:
  """Return the in-cluster launcher, or the unavailable variant outside a cluster."""
  if not settings.worker_container_image:
    return UnavailableClusterLauncher("WORKER_CONTAINER_IMAGE is not set.")
  host = os.getenv("KUBERNETES_SERVICE_HOST")
  token_path = service_account_dir / "token"
  if not host or not token_path.exists():
    return UnavailableClusterLauncher("Not running inside a Kubernetes cluster (no service host or service account token).")
  port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
  ca_path = service_account_dir / "ca.crt"
  env = {key: os.environ[key] for key in WORKER_ENV_KEYS if os.environ.get(key)}
  return KubernetesJobLauncher(
    image=settings.worker_container_image,
    namespace=settings.worker_k8s_namespace,
    api_url=f"https://{host}:{port}",
    token=token_path.read_text(encoding="utf-8").strip(),
    ca_path=str(ca_path) if ca_path.exists() else None,
    env=env,
  )


class KubernetesReconciler:
  """Leader-only tick: create a Job for each STARTING row and mark it RUNNING."""

  def __init__(self, repo: WorkerLifecycleRepository, launcher: ClusterJobLauncher, *, namespace: str, audit: AuditLogger | None = None) -> None:
    self._repo = repo
    self._launcher = launcher
    self._namespace = namespace
    self._audit = audit or AuditLogger(None)

  async def tick(self) -> int:
    if not self._launcher.available:
      logger.warning("Cluster launcher unavailable; STARTING workers stay pending")
      return 0
    spawned = 0
    for row in await self._repo.list_by_status("STARTING"):
      try:
        job_name = await self._launcher.create_job(lifecycle_id=row.id, worker_type=row.type)
      except Exception:  # noqa: BLE001
        # The row stays STARTING and the next tick tries again.
        logger.error("Failed to create cluster Job for worker %s", row.id, exc_info=True)
        continue
      spawned += 1
      metrics.record_spawn("k8s")
      try:
        await self._repo.mark_running(row.id, pid=None, host=job_name, meta={"k8sJob": job_name, "namespace": self._namespace})
      except Exception:  # noqa: BLE001
        logger.error("Created Job %s but could not mark worker %s RUNNING", job_name, row.id, exc_info=True)
      await self._audit.record("WORKER_SPAWN_K8S", {"lifecycleId": row.id, "type": row.type, "job": job_name, "namespace": self._namespace})
    return spawned
