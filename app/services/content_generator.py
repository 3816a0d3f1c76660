"""Content-generator capability used by leaf job processors.

The generator is injected. When CONTENT_GENERATOR_URL is unset the factory
returns an unavailable variant, and callers check `available` explicitly
instead of importing a backend conditionally.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
import msgspec

from app.config import Settings

logger = logging.getLogger(__name__)


class ContentGeneratorUnavailableError(RuntimeError):
  """Raised when generation is requested but no backend is configured."""


class GenerationScope(msgspec.Struct, frozen=True, omit_defaults=True):
  """What to generate content for."""

  job_type: str
  language: str
  subject_id: str | None = None
  subject_code: str | None = None
  board: str | None = None
  grade: int | None = None
  chapter_id: str | None = None
  chapter_title: str | None = None
  topic_id: str | None = None
  topic_title: str | None = None
  difficulty: str | None = None
  count: int | None = None


class TopicOutline(msgspec.Struct, frozen=True):
  title: str


class ChapterOutline(msgspec.Struct, frozen=True):
  title: str
  topics: list[TopicOutline] = []


class GenerationResult(msgspec.Struct, frozen=True, rename="camel"):
  """Generator output. Only the fields relevant to the job type are filled."""

  chapters: list[ChapterOutline] = []
  topics: list[TopicOutline] = []
  markdown: str | None = None
  questions: list[dict[str, Any]] = []
  cost_usd: float = 0.0


class ContentGeneratorClient(Protocol):
  """Produces chapters, topics, notes and questions for one scope."""

  @property
  def available(self) -> bool:
    """True when calls can succeed."""

  async def generate(self, scope: GenerationScope) -> GenerationResult:
    """Generate content for a scope."""


class UnavailableContentGenerator:
  """Stand-in used when no generator backend is configured."""

  available = False

  async def generate(self, scope: GenerationScope) -> GenerationResult:
    raise ContentGeneratorUnavailableError(f"Content generator is not configured (CONTENT_GENERATOR_URL is unset); cannot run {scope.job_type}.")


class HttpContentGenerator:
  """Calls a remote generation service over HTTP."""

  available = True

  def __init__(self, base_url: str, *, timeout_seconds: float = 300.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._timeout = timeout_seconds
    self._transport = transport

  async def generate(self, scope: GenerationScope) -> GenerationResult:
    url = f"{self._base_url}/generate/{scope.job_type}"
    async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport, trust_env=False) as client:
      try:
        response = await client.post(url, content=msgspec.json.encode(scope), headers={"content-type": "application/json"})
        response.raise_for_status()
      except httpx.HTTPStatusError as exc:
        logger.error("Content generator returned %s for %s: %s", exc.response.status_code, scope.job_type, exc.response.text[:500])
        raise
      except httpx.RequestError as exc:
        logger.error("Content generator request failed for %s: %s", scope.job_type, exc)
        raise
    return msgspec.json.decode(response.content, type=GenerationResult)


def build_content_generator(settings: Settings) -> ContentGeneratorClient:
  """Return the configured generator or the unavailable variant."""
  if settings.content_generator_url:
    return HttpContentGenerator(settings.content_generator_url, timeout_seconds=settings.content_generator_timeout_seconds)
  logger.warning("CONTENT_GENERATOR_URL is not set; leaf jobs will fail until it is configured.")
  return UnavailableContentGenerator()
