"""Domain models for hierarchical hydration jobs and worker lifecycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

JobStatus = Literal["pending", "running", "completed", "failed"]
WorkerStatus = Literal["STARTING", "RUNNING", "DRAINING", "STOPPED", "FAILED"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})
OPEN_STATUSES: frozenset[str] = frozenset({"pending", "running"})

LEVEL_ROOT = 0
LEVEL_SYLLABUS = 1
LEVEL_TOPIC_EXPAND = 2
LEVEL_NOTES = 3
LEVEL_QUESTIONS = 4
CHILD_LEVELS: tuple[int, ...] = (LEVEL_SYLLABUS, LEVEL_TOPIC_EXPAND, LEVEL_NOTES, LEVEL_QUESTIONS)

JOB_TYPE_BY_LEVEL: dict[int, str] = {
  LEVEL_ROOT: "hydrate_all",
  LEVEL_SYLLABUS: "syllabus",
  LEVEL_TOPIC_EXPAND: "topic_expand",
  LEVEL_NOTES: "note_gen",
  LEVEL_QUESTIONS: "question_gen",
}

HYDRATION_QUEUE = "content-hydration"
DEFAULT_DIFFICULTIES: tuple[str, ...] = ("easy", "medium", "hard")


def is_terminal(status: str) -> bool:
  """Return True for completed or failed jobs."""
  return status in TERMINAL_STATUSES


@dataclass(frozen=True)
class HydrationOptions:
  """Generation options captured on the root job at submission time."""

  generate_notes: bool = True
  generate_questions: bool = True
  difficulties: tuple[str, ...] = DEFAULT_DIFFICULTIES
  questions_per_difficulty: int = 10
  skip_validation: bool = False
  dry_run: bool = False

  def to_json(self) -> dict[str, Any]:
    return {
      "generateNotes": self.generate_notes,
      "generateQuestions": self.generate_questions,
      "difficulties": list(self.difficulties),
      "questionsPerDifficulty": self.questions_per_difficulty,
      "skipValidation": self.skip_validation,
      "dryRun": self.dry_run,
    }

  @classmethod
  def from_json(cls, raw: dict[str, Any] | None) -> HydrationOptions:
    data = raw or {}
    difficulties = data.get("difficulties")
    return cls(
      generate_notes=bool(data.get("generateNotes", True)),
      generate_questions=bool(data.get("generateQuestions", True)),
      difficulties=tuple(difficulties) if difficulties else DEFAULT_DIFFICULTIES,
      questions_per_difficulty=int(data.get("questionsPerDifficulty", 10)),
      skip_validation=bool(data.get("skipValidation", False)),
      dry_run=bool(data.get("dryRun", False)),
    )


@dataclass(frozen=True)
class LevelCounters:
  """Expected/completed pairs for the four progress levels of a root job."""

  chapters_expected: int = 0
  chapters_completed: int = 0
  topics_expected: int = 0
  topics_completed: int = 0
  notes_expected: int = 0
  notes_completed: int = 0
  questions_expected: int = 0
  questions_completed: int = 0


@dataclass
class HydrationJobRecord:
  """One node of a hydration tree. Level 0 is the root request."""

  id: str
  hierarchy_level: int
  job_type: str
  language: str
  status: JobStatus = "pending"
  root_job_id: str | None = None
  parent_job_id: str | None = None
  fanout_key: str | None = None
  subject_id: str | None = None
  chapter_id: str | None = None
  topic_id: str | None = None
  difficulty: str | None = None
  board: str | None = None
  grade: int | None = None
  subject_code: str | None = None
  attempts: int = 0
  locked_at: datetime | None = None
  content_ready: bool = False
  input_params: dict[str, Any] = field(default_factory=dict)
  result_json: dict[str, Any] | None = None
  last_error: str | None = None
  counters: LevelCounters = field(default_factory=LevelCounters)
  estimated_cost_usd: float | None = None
  cost_usd: float = 0.0
  estimated_duration_mins: int | None = None
  created_at: datetime | None = None
  started_at: datetime | None = None
  completed_at: datetime | None = None

  @property
  def is_root(self) -> bool:
    return self.hierarchy_level == LEVEL_ROOT

  @property
  def tree_id(self) -> str:
    """Return the id of the root this job belongs to (itself for roots)."""
    return self.root_job_id or self.id

  @property
  def options(self) -> HydrationOptions:
    return HydrationOptions.from_json(self.input_params.get("options"))


@dataclass(frozen=True)
class ChildJobSpec:
  """A unit of fan-out work the reconciler wants to exist under a root."""

  hierarchy_level: int
  job_type: str
  fanout_key: str
  parent_job_id: str
  subject_id: str | None = None
  chapter_id: str | None = None
  topic_id: str | None = None
  difficulty: str | None = None


@dataclass(frozen=True)
class LevelStatusCounts:
  """Job counts by status for one level under one root."""

  hierarchy_level: int
  counts: dict[str, int]

  @property
  def total(self) -> int:
    return sum(self.counts.values())

  @property
  def completed(self) -> int:
    return self.counts.get("completed", 0)

  @property
  def open(self) -> int:
    return sum(count for status, count in self.counts.items() if status in OPEN_STATUSES)

  @property
  def is_terminal(self) -> bool:
    return self.total > 0 and self.open == 0


@dataclass
class WorkerLifecycleRecord:
  """Bookkeeping for one spawned worker process or cluster Job."""

  id: str
  type: str
  status: WorkerStatus
  host: str | None = None
  pid: int | None = None
  meta: dict[str, Any] | None = None
  created_at: datetime | None = None
  started_at: datetime | None = None
  last_heartbeat_at: datetime | None = None
  stopped_at: datetime | None = None
