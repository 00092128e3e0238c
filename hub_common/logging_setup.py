from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configura el logging raíz una sola vez por proceso."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # uvicorn.access es muy ruidoso con el polling del dashboard
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
