"""Taxonomía de errores del hub.

El core nunca lanza HTTPException: los endpoints traducen estas clases
a códigos HTTP mediante los exception handlers registrados en main.py.
"""

from __future__ import annotations

from typing import Dict, List, Optional


class HubError(Exception):
    """Base para errores predecibles del dominio."""

    status = "error"

    def __init__(self, message: str, *, details: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body: dict = {"status": self.status, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class ValidationError(HubError):
    """Payload malformado o enumeración desconocida. El evento se descarta."""

    status = "validation_error"


class NotFoundError(HubError):
    status = "not_found"


class TransientIOError(HubError):
    """Colaborador externo o canal de comandos no disponible.

    Se reporta al llamador; el core no reintenta.
    """

    status = "unavailable"
