"""accounts/lambda_function.py

Account pool API (API Gateway HTTP API).

Routes:
    POST    /accounts                   register an account (NotReady, queued for reset)
    GET     /accounts                   list by ?status=
    GET     /accounts/{accountId}       read one account
    POST    /accounts/{accountId}/ready reset pipeline finished: NotReady -> Ready
    OPTIONS /accounts*
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from leasepool_shared.account_pool import AccountPool
from leasepool_shared.aws_clients import AwsClients
from leasepool_shared.config import Settings
from leasepool_shared.errors import LeasePoolError, ValidationError
from leasepool_shared.http_utils import _error, _parse_body, _path_method, _response, error_response
from leasepool_shared.models import AccountStatus
from leasepool_shared.notifications import Notifier, ResetQueue
from leasepool_shared.state_store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_ACCOUNT_PATH = re.compile(r"/accounts/(\d{12})")
_READY_PATH = re.compile(r"/accounts/(\d{12})/ready")

_pool: Optional[AccountPool] = None


def _get_pool() -> AccountPool:
    global _pool
    if _pool is None:
        settings = Settings.from_env()
        queue_url = settings.require("reset_queue_url")
        clients = AwsClients(settings)
        store = StateStore.from_settings(settings, clients)
        reset_queue = ResetQueue(clients.sqs, queue_url)
        _pool = AccountPool(store, Notifier(clients.sns), reset_queue, settings.account_created_topic_arn)
    return _pool


def _handle_create(event: Dict[str, Any], pool: AccountPool) -> Dict[str, Any]:
    body = _parse_body(event)
    if not isinstance(body, dict):
        raise ValidationError("Failed to parse request body")
    account = pool.register_account(
        str(body.get("id") or ""),
        str(body.get("adminRoleArn") or ""),
        principal_role_arn=str(body.get("principalRoleArn") or ""),
        metadata=body.get("metadata") if isinstance(body.get("metadata"), dict) else None,
    )
    return _response(201, account.to_item())


def _handle_list(event: Dict[str, Any], pool: AccountPool) -> Dict[str, Any]:
    params = event.get("queryStringParameters") or {}
    raw_status = params.get("status")
    if not raw_status:
        raise ValidationError("status is required")
    try:
        status = AccountStatus(raw_status)
    except ValueError as exc:
        raise ValidationError(f"Unknown account status: {raw_status}") from exc
    return _response(200, [account.to_item() for account in pool.accounts_by_status(status)])


def _route(event: Dict[str, Any]) -> Dict[str, Any]:
    method, path = _path_method(event)
    if method == "OPTIONS":
        return _response(200, {"success": True})

    logger.info("[INFO] route method=%s path=%s", method, path)
    path = path.rstrip("/") or "/"

    try:
        pool = _get_pool()
        if path == "/accounts":
            if method == "POST":
                return _handle_create(event, pool)
            if method == "GET":
                return _handle_list(event, pool)
        match_ready = _READY_PATH.fullmatch(path)
        if method == "POST" and match_ready:
            return _response(200, pool.mark_account_ready(match_ready.group(1)).to_item())
        match_get = _ACCOUNT_PATH.fullmatch(path)
        if method == "GET" and match_get:
            return _response(200, pool.store.require_account(match_get.group(1)).to_item())
    except LeasePoolError as exc:
        logger.warning("[WARNING] %s %s failed: %s", method, path, exc)
        return error_response(exc)

    return _error(404, f"Unsupported route: {method} {path}")


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    result = _route(event)
    logger.info("[END] accounts: %s", json.dumps({"statusCode": result.get("statusCode")}))
    return result
