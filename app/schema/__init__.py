"""Schema package exports."""

from .audit import AuditLog
from .catalog import Chapter, Subject, Topic
from .hydration import HydrationJob, HydrationJobEvent, HydrationOutbox
from .workers import JobLock, WorkerLifecycle

__all__ = ["AuditLog", "Chapter", "Subject", "Topic", "HydrationJob", "HydrationJobEvent", "HydrationOutbox", "JobLock", "WorkerLifecycle"]
