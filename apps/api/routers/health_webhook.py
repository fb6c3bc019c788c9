"""
Health Auto Export Webhook Router

Receives HealthKit exports pushed by the Health Auto Export iOS app.
"""

import json
from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from core.auth import get_webhook_athlete
from core.database import SessionLocal
from core.exceptions import BadRequestError
from models import Athlete
from schemas import PayloadErrorResponse, WebhookIngestResponse
from services.health_ingest import HealthIngestPipeline, PayloadFormatError
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health-auto-export", tags=["health-auto-export"])


def get_ingest_pipeline() -> HealthIngestPipeline:
    """Pipeline bound to the application session factory."""
    return HealthIngestPipeline(SessionLocal)


@router.post(
    "/webhook",
    response_model=WebhookIngestResponse,
    responses={400: {"model": PayloadErrorResponse}},
)
async def receive_export(
    request: Request,
    athlete: Athlete = Depends(get_webhook_athlete),
    pipeline: HealthIngestPipeline = Depends(get_ingest_pipeline),
):
    """
    Ingest one export.

    Responds only after every record and derived value has been written.
    An export whose shape cannot be recognized gets a 400 with the keys we
    saw and the start of the body, so the app's automation log is useful.
    """
    body_bytes = await request.body()
    body_str = body_bytes.decode("utf-8", errors="replace")

    try:
        payload = json.loads(body_str)
    except json.JSONDecodeError:
        logger.error(f"Invalid JSON in export from athlete {athlete.id}")
        raise BadRequestError("Invalid JSON")

    try:
        result = await run_in_threadpool(pipeline.ingest_payload, athlete.id, payload, body_str)
    except PayloadFormatError as e:
        logger.warning(
            f"Unrecognized export shape from athlete {athlete.id}: keys={e.received_keys}",
            extra={"extra_fields": {"body_snippet": e.body_snippet}},
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": e.reason, "details": e.details()},
        )

    return result.as_response()
