from pydantic import BaseModel
from typing import Optional, List


class WebhookIngestResponse(BaseModel):
    """Counts of records written by one Health Auto Export delivery."""
    success: bool = True
    biomarkersCount: int
    sleepSessionsCount: int
    workoutSessionsCount: int


class PayloadErrorDetails(BaseModel):
    receivedKeys: List[str] = []
    bodySnippet: Optional[str] = None


class PayloadErrorResponse(BaseModel):
    error: str
    details: PayloadErrorDetails


class ProviderEventResponse(BaseModel):
    status: str  # acknowledged, processed, ignored, athlete_not_found
    biomarkersCount: Optional[int] = None
    sleepSessionsCount: Optional[int] = None
    workoutSessionsCount: Optional[int] = None
