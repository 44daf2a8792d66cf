from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header, HTTPException

from app.config import settings
from app.core.logging import logger

__all__ = ["verify_admin_token"]


async def verify_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    """
    Guard for the content admin routes.

    The caller must send ``X-Admin-Token`` equal to ``ADMIN_TOKEN``. With no
    token configured the admin surface is switched off.
    """
    expected = settings.ADMIN_TOKEN
    if not expected:
        logger.warning("admin_auth_disabled")
        raise HTTPException(status_code=503, detail="admin API is not configured")

    if not x_admin_token:
        logger.info("admin_auth_missing_token")
        raise HTTPException(status_code=401, detail="missing admin token")

    if not secrets.compare_digest(x_admin_token.encode("utf-8"), expected.encode("utf-8")):
        logger.info("admin_auth_rejected")
        raise HTTPException(status_code=401, detail="invalid admin token")
