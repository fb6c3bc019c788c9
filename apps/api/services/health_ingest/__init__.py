"""
Health Ingest Module

Normalizes third-party health-tracker webhooks into canonical records:
- Scalar biomarker samples (heart rate, HRV, glucose, weight, blood pressure, ...)
- One sleep session per athlete per night
- Every received point, verbatim, in an append-only raw event log
- Workout sessions, linked to the athlete's training schedule when they match

Sources:
- Health Auto Export (batched HealthKit exports, several payload shapes)
- Junction (one signed event per call)

Design Principles:
- Every write is idempotent; re-delivery never duplicates
- Failures are scoped to one data point; siblings keep going
- Unknown metrics are kept raw, otherwise skipped quietly
- Derived values (body fat %, goal progress) are best effort
"""

from .errors import (
    IngestError,
    PayloadFormatError,
    FieldMissing,
    ConversionImplausible,
    DerivedAggregateFailure,
)
from .metric_types import BiomarkerKind
from .payload_format import MetricEnvelope, resolve_envelopes
from .pipeline import HealthIngestPipeline, IngestResult, IngestTally
from .provider_events import ProviderEventOutcome, dispatch_event
from .raw_events import RawEvent, build_raw_events
from .repository import IngestionRepository

__all__ = [
    'IngestError',
    'PayloadFormatError',
    'FieldMissing',
    'ConversionImplausible',
    'DerivedAggregateFailure',
    'BiomarkerKind',
    'MetricEnvelope',
    'resolve_envelopes',
    'HealthIngestPipeline',
    'IngestResult',
    'IngestTally',
    'ProviderEventOutcome',
    'dispatch_event',
    'RawEvent',
    'build_raw_events',
    'IngestionRepository',
]
