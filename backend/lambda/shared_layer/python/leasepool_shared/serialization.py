"""leasepool_shared.serialization — DynamoDB attribute maps, timestamps, log events.

Wraps boto3's TypeSerializer/TypeDeserializer so records can move between
plain dicts (record attribute names) and DynamoDB attribute maps, including
the raw images carried by DynamoDB Streams records.
"""

from __future__ import annotations

import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Optional

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

logger = logging.getLogger(__name__)

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _to_ddb_value(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_ddb_value(v) for v in value]
    return value


def _from_ddb_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _from_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_from_ddb_value(v) for v in value]
    return value


def serialize_value(value: Any) -> Dict[str, Any]:
    """Serialize one Python value into a DynamoDB attribute value."""
    return _SER.serialize(_to_ddb_value(value))


def serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a plain dict into a DynamoDB attribute map."""
    return {k: serialize_value(v) for k, v in item.items()}


def deserialize_item(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB attribute map to a plain Python dict."""
    return {k: _from_ddb_value(_DESER.deserialize(v)) for k, v in raw.items()}


def unix_now() -> int:
    """Current Unix epoch as integer."""
    return int(time.time())


def emit_structured_event(
    *,
    component: str,
    event: str,
    extra: Optional[Dict[str, Any]] = None,
    level: int = logging.INFO,
) -> None:
    """Log one JSON observability payload on a single line."""
    payload: Dict[str, Any] = {
        "timestamp": unix_now(),
        "component": component,
        "event": event,
    }
    if extra:
        payload.update(extra)
    logger.log(level, "[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
