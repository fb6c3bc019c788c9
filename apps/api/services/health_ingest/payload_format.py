"""
Payload Format Resolver

Health Auto Export has shipped several payload shapes over its versions and
export modes. This module turns whatever arrived into an ordered list of
MetricEnvelope objects, trying the known shapes in a fixed order:

1. {"data": {"metrics": [...]}}      current HAE REST export
2. {"metrics": [...]}
3. [...]                             bare list of metrics
4. {"data": [...]}
5. {"name": ...} / {"type": ...}     a single metric object
6. fallback scan, key by key, for the first non-empty list at that key or
   one level inside it

If none of these yields a list, or the list holds no metric objects,
PayloadFormatError carries the received keys and a truncated body for
diagnosis.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.health_ingest.errors import PayloadFormatError

logger = logging.getLogger(__name__)

DEFAULT_SNIPPET_LIMIT = 500
NO_METRICS_REASON = "no metrics found"


@dataclass(frozen=True)
class MetricEnvelope:
    """One named metric group: a name, its raw data points, and the raw element."""
    name: str
    data: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    def with_points(self, points: List[Dict[str, Any]]) -> "MetricEnvelope":
        return MetricEnvelope(name=self.name, data=list(points), raw=self.raw)


def _locate_metric_list(payload: Any) -> Optional[List[Any]]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return None

    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("metrics"), list):
        return data["metrics"]
    if isinstance(payload.get("metrics"), list):
        return payload["metrics"]
    if isinstance(data, list):
        return data
    if payload.get("name") or payload.get("type"):
        return [payload]

    # Key by key: the key's own list, else the first list one level inside it.
    for key, value in payload.items():
        if isinstance(value, list) and value:
            logger.debug(f"Payload resolved by fallback scan at '{key}'")
            return value
        if isinstance(value, dict):
            for nested in value.values():
                if isinstance(nested, list) and nested:
                    logger.debug(f"Payload resolved by fallback scan inside '{key}'")
                    return nested
    return None


def _snippet(payload: Any, raw_body: Optional[str], limit: int) -> str:
    if raw_body is None:
        try:
            raw_body = json.dumps(payload, default=str)
        except (TypeError, ValueError):
            raw_body = repr(payload)
    return raw_body[:limit]


def to_envelope(element: Dict[str, Any]) -> MetricEnvelope:
    name = element.get("name") or element.get("type") or "unknown"
    data = element.get("data")
    points = [p for p in data if isinstance(p, dict)] if isinstance(data, list) else []
    return MetricEnvelope(name=str(name), data=points, raw=element)


def resolve_envelopes(
    payload: Any,
    raw_body: Optional[str] = None,
    snippet_limit: int = DEFAULT_SNIPPET_LIMIT,
) -> List[MetricEnvelope]:
    """
    Resolve a parsed JSON payload to metric envelopes in payload order.

    Non-object elements of the located list are dropped.

    Raises:
        PayloadFormatError: no list could be located anywhere in the payload,
            or the located list holds no metric objects.
    """
    received_keys = sorted(payload.keys()) if isinstance(payload, dict) else []
    metrics = _locate_metric_list(payload)
    if metrics is None:
        raise PayloadFormatError(
            received_keys=received_keys,
            body_snippet=_snippet(payload, raw_body, snippet_limit),
        )

    envelopes = [to_envelope(m) for m in metrics if isinstance(m, dict)]
    dropped = len(metrics) - len(envelopes)
    if dropped:
        logger.debug(f"Dropped {dropped} non-object metric entries")
    if not envelopes:
        raise PayloadFormatError(
            reason=NO_METRICS_REASON,
            received_keys=received_keys,
            body_snippet=_snippet(payload, raw_body, snippet_limit),
        )
    return envelopes
