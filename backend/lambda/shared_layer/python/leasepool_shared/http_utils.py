"""leasepool_shared.http_utils — API Gateway response helpers.

Standard response envelope, request parsing, and the mapping from engine
exceptions onto HTTP status codes used by the leases API Lambda.
"""

from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any, Dict, Tuple

from .errors import (
    CompensationFailure,
    ConditionFailure,
    ConfigurationError,
    InvariantViolation,
    LeasePoolError,
    NoAccountsAvailable,
    NotFound,
    PrincipalBusy,
    StorageFault,
    ValidationError,
)

logger = logging.getLogger(__name__)

CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")
CORS_HEADERS = {
    "Access-Control-Allow-Origin": CORS_ORIGIN,
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,DELETE,OPTIONS",
}


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    """Build a standard API Gateway response with CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            **CORS_HEADERS,
        },
        "body": json.dumps(body, default=str),
    }


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Build a standard error response.

    Args:
        status_code: HTTP status code.
        message: Human-readable error message.
        **extra: Additional fields merged into the response payload.
    """
    payload: Dict[str, Any] = {
        "success": False,
        "error": message,
    }
    if extra:
        payload.update(extra)
    return _response(status_code, payload)


def _parse_body(event: Dict[str, Any]) -> Any:
    """Parse JSON body from API Gateway event (handles base64)."""
    raw = event.get("body") or "{}"
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path from API Gateway v1 or v2 event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = http.get("path") or event.get("rawPath") or event.get("path") or "/"
    return method, path


def error_response(exc: LeasePoolError) -> Dict[str, Any]:
    """Map an engine exception onto an API error response."""
    if isinstance(exc, ValidationError):
        return _error(400, str(exc))
    if isinstance(exc, NotFound):
        return _error(404, str(exc))
    if isinstance(exc, PrincipalBusy):
        return _error(409, str(exc), retryable=False)
    if isinstance(exc, ConditionFailure):
        return _error(409, str(exc), retryable=True)
    if isinstance(exc, NoAccountsAvailable):
        return _error(503, str(exc), retryable=True)
    if isinstance(exc, CompensationFailure):
        logger.error("[ERROR] Rollback failed: %s", exc)
        return _error(500, "Failed to roll back lease provisioning")
    if isinstance(exc, ConfigurationError):
        logger.error("[ERROR] Misconfigured: %s", exc)
        return _error(500, "Service is not configured")
    if isinstance(exc, (InvariantViolation, StorageFault)):
        logger.error("[ERROR] %s: %s", type(exc).__name__, exc)
        return _error(500, str(exc))
    logger.error("[ERROR] Unhandled lease pool error: %s", exc)
    return _error(500, "Internal server error")
