"""Validación de eventos entrantes."""

from .deduplication import DeduplicationCache
from .event_validator import ValidationResult, validate_event

__all__ = ["DeduplicationCache", "ValidationResult", "validate_event"]
