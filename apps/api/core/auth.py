"""
Webhook authentication dependencies.

Health Auto Export cannot do interactive auth; each athlete configures a
per-athlete key in the app, sent on every export as the X-API-Key header.
"""
from fastapi import Depends, Header
from sqlalchemy.orm import Session
from typing import Optional

from core.database import get_db
from core.exceptions import UnauthorizedError
from models import Athlete
import logging

logger = logging.getLogger(__name__)


def get_webhook_athlete(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: Session = Depends(get_db),
) -> Athlete:
    """
    Resolve the athlete owning the webhook key.

    Raises UnauthorizedError (401) if the key is missing or unknown.
    """
    if not x_api_key:
        raise UnauthorizedError("Missing API key")

    athlete = db.query(Athlete).filter(Athlete.webhook_key == x_api_key).first()
    if not athlete:
        logger.warning("Webhook request with unknown API key - rejecting")
        raise UnauthorizedError("Invalid API key")

    return athlete
