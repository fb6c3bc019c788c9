"""
Ingestion error taxonomy.

Every failure is scoped to the smallest unit of work:

- PayloadFormatError: nothing usable in the request (the only user-visible error)
- FieldMissing: one data point lacks a required field; siblings continue
- ConversionImplausible: a derived value is out of physiological range; dropped
- DerivedAggregateFailure: post-ingest recomputation failed; logged, never surfaced

Unrecognized metric names are not errors at all (see classifier.Classification).
"""
from typing import Any, Dict, List, Optional


class IngestError(Exception):
    """Base class for ingestion failures."""


class PayloadFormatError(IngestError):
    """No metric list could be extracted from the payload."""

    def __init__(
        self,
        reason: str = "no array data found",
        received_keys: Optional[List[str]] = None,
        body_snippet: Optional[str] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.received_keys = received_keys or []
        self.body_snippet = body_snippet

    def details(self) -> Dict[str, Any]:
        return {
            "receivedKeys": self.received_keys,
            "bodySnippet": self.body_snippet,
        }


class FieldMissing(IngestError):
    """A data point is missing a field required to build a record."""

    def __init__(self, field: str, point: Optional[Dict[str, Any]] = None):
        super().__init__(f"missing field: {field}")
        self.field = field
        self.point_keys = sorted(point.keys()) if isinstance(point, dict) else []


class ConversionImplausible(IngestError):
    """A computed value fell outside its plausible range."""

    def __init__(self, kind: str, value: float):
        super().__init__(f"implausible {kind}: {value}")
        self.kind = kind
        self.value = value


class DerivedAggregateFailure(IngestError):
    """A derived-aggregate step failed after primary writes succeeded."""

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
