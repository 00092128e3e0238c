from .tasks import PeriodicTask, TaskScheduler

__all__ = ["PeriodicTask", "TaskScheduler"]
