from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from app.jobs.models import DEFAULT_DIFFICULTIES, HydrationOptions

SUPPORTED_LANGUAGES = ("en", "hi")


class CamelModel(BaseModel):
  """Base for admin API payloads, which use camelCase on the wire."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HydrateAllOptions(CamelModel):
  """Generation options for a hydration request."""

  generate_notes: bool = True
  generate_questions: bool = True
  difficulties: list[Literal["easy", "medium", "hard"]] = Field(default_factory=lambda: list(DEFAULT_DIFFICULTIES), min_length=1, max_length=3)
  questions_per_difficulty: int = Field(default=10, ge=1, le=50)
  skip_validation: bool = False
  dry_run: bool = False
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  @field_validator("difficulties")
  @classmethod
  def _dedupe_difficulties(cls, value: list[str]) -> list[str]:
    # Duplicates would collide on the (topic, difficulty) fan-out key.
    return list(dict.fromkeys(value))

  def to_options(self) -> HydrationOptions:
    return HydrationOptions(
      generate_notes=self.generate_notes,
      generate_questions=self.generate_questions,
      difficulties=tuple(self.difficulties),
      questions_per_difficulty=self.questions_per_difficulty,
      skip_validation=self.skip_validation,
      dry_run=self.dry_run,
    )


class HydrateAllRequest(CamelModel):
  """Request payload for hydrating a whole subject."""

  language: Literal["en", "hi"] = Field(description="Content language.", examples=["en"])
  board_code: StrictStr = Field(min_length=1, examples=["CBSE"])
  grade: int = Field(ge=1, le=12, examples=[10])
  subject_code: StrictStr = Field(min_length=1, examples=["MATH"])
  subject_name: StrictStr | None = Field(default=None, min_length=1)
  options: HydrateAllOptions = Field(default_factory=HydrateAllOptions)
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

  @field_validator("grade", mode="before")
  @classmethod
  def _parse_grade(cls, value: Any) -> Any:
    # Admin forms send the grade as a string.
    if isinstance(value, str) and value.strip().isdigit():
      return int(value.strip())
    return value

  @field_validator("board_code", "subject_code")
  @classmethod
  def _normalize_code(cls, value: str) -> str:
    normalized = value.strip().upper()
    if not normalized:
      raise ValueError("must not be blank")
    return normalized


class HydrateAllEstimates(CamelModel):
  total_chapters: int
  estimated_topics: int
  estimated_notes: int
  estimated_questions: int
  estimated_cost_usd: float
  estimated_duration_mins: int


class HydrateAllSubmitResponse(CamelModel):
  root_job_id: str
  status: str
  estimates: HydrateAllEstimates
  trace_id: str
  created_at: str | None = None


class LevelProgress(CamelModel):
  completed: int
  expected: int


class HydrationProgress(CamelModel):
  overall_percent: int
  levels: dict[str, LevelProgress]


class HydrationTiming(CamelModel):
  created_at: str | None
  started_at: str | None
  finished_at: str | None
  estimated_duration_mins: int | None
  actual_duration_mins: int | None


class HydrationCost(CamelModel):
  estimated: float | None
  actual: float


class HydrationMetadata(CamelModel):
  language: str
  board: str | None
  grade: int | None
  subject: str | None
  subject_id: str | None
  trace_id: str | None
  options: dict[str, Any]


class JobLogEntry(CamelModel):
  job_id: str
  event_type: str
  message: str
  created_at: str
  payload: dict[str, Any] | None = None


class FailedJobSummary(CamelModel):
  id: str
  job_type: str
  hierarchy_level: int
  last_error: str | None
  created_at: str | None


class HydrateAllStatusResponse(CamelModel):
  """Progress view of one hydration tree."""

  root_job_id: str
  status: str
  progress: HydrationProgress
  timing: HydrationTiming
  cost: HydrationCost
  metadata: HydrationMetadata
  recent_logs: list[JobLogEntry]
  child_job_summary: dict[str, dict[str, int]]
  failed_jobs: list[FailedJobSummary]
  content_ready_jobs: int


class HydrateAllJobSummary(CamelModel):
  root_job_id: str
  status: str
  language: str
  board: str | None
  grade: int | None
  subject: str | None
  progress_percent: int
  cost_usd: float
  created_at: str | None
  completed_at: str | None


class HydrateAllListResponse(CamelModel):
  items: list[HydrateAllJobSummary]
  total: int
  limit: int
  offset: int


class HydrateAllRetryResponse(CamelModel):
  job_id: str
  root_job_id: str
  status: str
