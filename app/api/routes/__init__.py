from . import hydration, tasks, workers

__all__ = ["hydration", "tasks", "workers"]
