"""Consultas de solo lectura sobre registry, historial y agregados."""

from .service import QueryService

__all__ = ["QueryService"]
