"""Autenticación por API Key para endpoints de escritura.

SECURITY: En producción, EVENT_HUB_API_KEY debe estar configurado.
Las lecturas (status, devices, events, /ws) no requieren key.
"""

from __future__ import annotations

import hmac
import logging
import os

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)

_warned_dev_mode = False


def require_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key")
) -> None:
    global _warned_dev_mode
    expected = os.getenv("EVENT_HUB_API_KEY")
    is_production = os.getenv("ENVIRONMENT") == "production"

    if not expected:
        if is_production:
            logger.error("CRITICAL: EVENT_HUB_API_KEY not configured in production!")
            raise HTTPException(status_code=500, detail="Server misconfiguration: API key not set")
        if not _warned_dev_mode:
            logger.warning(
                "[SECURITY WARNING] EVENT_HUB_API_KEY not set - "
                "allowing unauthenticated writes (DEV ONLY)"
            )
            _warned_dev_mode = True
        return

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")
    if not hmac.compare_digest(x_api_key, expected):
        logger.warning("Invalid API key attempt")
        raise HTTPException(status_code=401, detail="Invalid API key")
