# app/deps.py
from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core import config
from app.core.database import get_db
from app.models.merchant import Merchant
from app.services.merchants import get_merchant

logger = logging.getLogger(__name__)


def require_admin_key(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> None:
    """Merchant admin routes are closed unless ADMIN_API_KEY is configured."""
    if not config.ADMIN_API_KEY:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Admin API disabled")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, config.ADMIN_API_KEY):
        logger.warning("admin request rejected: bad X-Admin-Key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


def get_merchant_or_404(merchant_id: int, db: Session = Depends(get_db)) -> Merchant:
    merchant = get_merchant(db, merchant_id)
    if merchant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Merchant not found")
    return merchant
