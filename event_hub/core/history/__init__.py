from .event_history import DEFAULT_CAPACITY, EventHistory

__all__ = ["DEFAULT_CAPACITY", "EventHistory"]
