"""Progress math for root hydration jobs."""

from __future__ import annotations

import math
from datetime import UTC, datetime

from app.jobs.models import LevelCounters

LEVEL_WEIGHTS: dict[str, float] = {"chapters": 0.2, "topics": 0.2, "notes": 0.3, "questions": 0.3}


def level_pairs(counters: LevelCounters) -> dict[str, tuple[int, int]]:
  """Return {level: (completed, expected)}."""
  return {
    "chapters": (counters.chapters_completed, counters.chapters_expected),
    "topics": (counters.topics_completed, counters.topics_expected),
    "notes": (counters.notes_completed, counters.notes_expected),
    "questions": (counters.questions_completed, counters.questions_expected),
  }


def overall_percent(counters: LevelCounters) -> int:
  """Weighted completion; a level with nothing expected contributes nothing."""
  total = 0.0
  for level, (completed, expected) in level_pairs(counters).items():
    if expected > 0:
      total += (min(completed, expected) / expected) * LEVEL_WEIGHTS[level]
  return round(total * 100)


def unweighted_percent(counters: LevelCounters) -> int:
  """Plain completed/expected ratio used by the jobs table."""
  pairs = level_pairs(counters).values()
  expected = sum(exp for _, exp in pairs)
  completed = sum(comp for comp, _ in pairs)
  if expected <= 0:
    return 0
  return round(completed / expected * 100)


def actual_duration_mins(started_at: datetime | None, finished_at: datetime | None, *, now: datetime | None = None) -> int | None:
  if started_at is None:
    return None
  end = finished_at or now or datetime.now(UTC)
  return math.ceil((end - started_at).total_seconds() / 60)
