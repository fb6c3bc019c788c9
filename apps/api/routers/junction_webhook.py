"""
Junction Webhook Router

Handles signed Junction events (provider connections, backfill completion,
daily data updates).
"""

from typing import Optional
import json
import uuid
from fastapi import APIRouter, Request, HTTPException, status, Header, Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from core.database import get_db
from core.exceptions import BadRequestError
from models import Athlete
from routers.health_webhook import get_ingest_pipeline
from schemas import ProviderEventResponse
from services.health_ingest import HealthIngestPipeline, dispatch_event
from services.junction_webhook import verify_webhook_signature
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/junction", tags=["junction-webhook"])


def _resolve_athlete(db: Session, event: dict) -> Optional[Athlete]:
    client_user_id = event.get("client_user_id")
    if client_user_id:
        try:
            athlete = db.query(Athlete).filter(Athlete.id == uuid.UUID(str(client_user_id))).first()
        except ValueError:
            athlete = None
        if athlete:
            return athlete

    junction_user_id = event.get("user_id")
    if junction_user_id:
        return db.query(Athlete).filter(Athlete.junction_user_id == str(junction_user_id)).first()
    return None


@router.post("/webhook", response_model=ProviderEventResponse, response_model_exclude_none=True)
async def handle_webhook_event(
    request: Request,
    svix_id: Optional[str] = Header(None, alias="svix-id"),
    svix_timestamp: Optional[str] = Header(None, alias="svix-timestamp"),
    svix_signature: Optional[str] = Header(None, alias="svix-signature"),
    webhook_id: Optional[str] = Header(None, alias="webhook-id"),
    webhook_timestamp: Optional[str] = Header(None, alias="webhook-timestamp"),
    webhook_signature: Optional[str] = Header(None, alias="webhook-signature"),
    db: Session = Depends(get_db),
    pipeline: HealthIngestPipeline = Depends(get_ingest_pipeline),
):
    """
    Handle one Junction event.

    Unsigned or badly signed deliveries are rejected before the body is parsed.
    """
    # SECURITY: Signature is MANDATORY - reject unsigned requests
    msg_id = svix_id or webhook_id
    timestamp = svix_timestamp or webhook_timestamp
    signature = svix_signature or webhook_signature
    if not (msg_id and timestamp and signature):
        logger.warning("Junction webhook missing signature headers - rejecting")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing signature"
        )

    body_bytes = await request.body()
    # Non-UTF-8 bytes are replaced, so such a body fails verification.
    body_str = body_bytes.decode("utf-8", errors="replace")
    if not verify_webhook_signature(body_str, msg_id, timestamp, signature):
        logger.warning(f"Invalid Junction webhook signature for message {msg_id} - rejecting")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature"
        )

    try:
        event = json.loads(body_str)
    except json.JSONDecodeError:
        logger.error("Invalid JSON in Junction webhook payload")
        raise BadRequestError("Invalid JSON")
    if not isinstance(event, dict):
        raise BadRequestError("Expected a JSON object")

    event_type = event.get("event_type")
    logger.info(f"Junction event: type={event_type}, user_id={event.get('user_id')}, message={msg_id}")

    athlete = _resolve_athlete(db, event)
    if not athlete:
        logger.warning(
            f"No athlete found for Junction user {event.get('user_id')} "
            f"(client_user_id={event.get('client_user_id')})"
        )
        return {"status": "athlete_not_found"}

    outcome = await run_in_threadpool(dispatch_event, pipeline, athlete.id, event)
    return outcome.as_response()
