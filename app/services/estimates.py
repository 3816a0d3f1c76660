"""Cost and duration estimates shown before and after a hydration submission."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from app.jobs.models import HydrationOptions, LevelCounters

COST_PER_CHAPTER_USD = 0.05
COST_PER_TOPIC_USD = 0.02
COST_PER_NOTE_USD = 0.15
COST_PER_QUESTION_USD = 0.03

MINUTES_PER_CHAPTER = 2
MINUTES_PER_TOPIC = 1
MINUTES_PER_NOTE = 5
MINUTES_PER_QUESTION = 2

AVG_CHAPTERS_PER_SUBJECT = 12
AVG_TOPICS_PER_CHAPTER = 5
NOTES_PER_TOPIC = 1


@dataclass(frozen=True)
class HydrationEstimate:
  """Sizing guess for a subject before its syllabus exists."""

  total_chapters: int
  estimated_topics: int
  estimated_notes: int
  estimated_questions: int
  estimated_question_jobs: int
  estimated_cost_usd: float
  estimated_duration_mins: int

  def to_json(self) -> dict[str, Any]:
    return {
      "totalChapters": self.total_chapters,
      "estimatedTopics": self.estimated_topics,
      "estimatedNotes": self.estimated_notes,
      "estimatedQuestions": self.estimated_questions,
      "estimatedCostUsd": self.estimated_cost_usd,
      "estimatedDurationMins": self.estimated_duration_mins,
    }

  def initial_counters(self) -> LevelCounters:
    """Expected counters stored on a new root until real fan-out replaces them.

    Questions are tracked in job units (one per topic and difficulty), matching
    what the reconciler counts once level 4 exists.
    """
    return LevelCounters(
      chapters_expected=self.total_chapters,
      topics_expected=self.estimated_topics,
      notes_expected=self.estimated_notes,
      questions_expected=self.estimated_question_jobs,
    )


def estimate_hydration(options: HydrationOptions, *, chapters: int = AVG_CHAPTERS_PER_SUBJECT, topics_per_chapter: int = AVG_TOPICS_PER_CHAPTER) -> HydrationEstimate:
  topics = chapters * topics_per_chapter
  notes = topics * NOTES_PER_TOPIC if options.generate_notes else 0
  question_jobs = topics * len(options.difficulties) if options.generate_questions else 0
  questions = question_jobs * options.questions_per_difficulty

  cost = chapters * COST_PER_CHAPTER_USD + topics * COST_PER_TOPIC_USD + notes * COST_PER_NOTE_USD + questions * COST_PER_QUESTION_USD
  minutes = chapters * MINUTES_PER_CHAPTER + topics * MINUTES_PER_TOPIC + notes * MINUTES_PER_NOTE + questions * MINUTES_PER_QUESTION

  return HydrationEstimate(
    total_chapters=chapters,
    estimated_topics=topics,
    estimated_notes=notes,
    estimated_questions=questions,
    estimated_question_jobs=question_jobs,
    estimated_cost_usd=round(cost, 2),
    estimated_duration_mins=math.ceil(minutes),
  )
