"""leases/lambda_function.py

Lease API (API Gateway HTTP API).

Routes:
    POST    /leases                 provision a lease for principalId
    DELETE  /leases                 decommission principalId's lease on accountId
    GET     /leases                 list by ?principalId=, ?accountId= or ?status=
    GET     /leases/{leaseId}       read one lease
    OPTIONS /leases*

Engine errors map onto status codes in ``leasepool_shared.http_utils``;
lost compare-and-swap races come back as 409 with ``retryable: true``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from leasepool_shared.account_pool import AccountPool
from leasepool_shared.aws_clients import AwsClients
from leasepool_shared.config import Settings
from leasepool_shared.errors import LeasePoolError, ValidationError
from leasepool_shared.http_utils import _error, _parse_body, _path_method, _response, error_response
from leasepool_shared.models import LeaseStatus, LeaseStatusReason
from leasepool_shared.notifications import Notifier, ResetQueue
from leasepool_shared.provisioner import LeaseProvisioner, validate_lease_request
from leasepool_shared.state_store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_LEASE_ID_PATH = re.compile(r"/leases/([A-Za-z0-9\-]+)")
_REQUIRED_SETTINGS = ("reset_queue_url", "lease_added_topic_arn", "lease_removed_topic_arn")


@dataclass
class Components:
    settings: Settings
    store: StateStore
    pool: AccountPool
    provisioner: LeaseProvisioner


_components_cache: Optional[Components] = None


def _components() -> Components:
    global _components_cache
    if _components_cache is None:
        settings = Settings.from_env()
        for name in _REQUIRED_SETTINGS:
            settings.require(name)
        clients = AwsClients(settings)
        store = StateStore.from_settings(settings, clients)
        notifier = Notifier(clients.sns)
        reset_queue = ResetQueue(clients.sqs, settings.reset_queue_url)
        pool = AccountPool(store, notifier, reset_queue, settings.account_created_topic_arn)
        provisioner = LeaseProvisioner(store, pool, notifier, reset_queue, settings)
        _components_cache = Components(settings, store, pool, provisioner)
    return _components_cache


def _handle_create(event: Dict[str, Any], c: Components) -> Dict[str, Any]:
    request = validate_lease_request(_parse_body(event), c.settings, c.store.now())
    logger.info("[INFO] Provisioning account for principal %s", request.principal_id)
    lease = c.provisioner.provision_lease(request)
    return _response(201, lease.to_item())


def _handle_delete(event: Dict[str, Any], c: Components) -> Dict[str, Any]:
    body = _parse_body(event)
    if not isinstance(body, dict):
        raise ValidationError("Failed to parse request body")
    principal_id = body.get("principalId")
    account_id = body.get("accountId")
    if not principal_id or not account_id:
        raise ValidationError("principalId and accountId are required")
    lease = c.provisioner.decommission_lease(principal_id, account_id, LeaseStatusReason.DESTROYED)
    return _response(200, lease.to_item())


def _handle_list(event: Dict[str, Any], c: Components) -> Dict[str, Any]:
    params = event.get("queryStringParameters") or {}
    if params.get("principalId"):
        leases = c.pool.leases_by_principal(params["principalId"])
    elif params.get("accountId"):
        leases = c.pool.leases_by_account(params["accountId"])
    elif params.get("status"):
        try:
            status = LeaseStatus(params["status"])
        except ValueError as exc:
            raise ValidationError(f"Unknown lease status: {params['status']}") from exc
        leases = c.pool.leases_by_status(status)
    else:
        raise ValidationError("One of principalId, accountId or status is required")
    return _response(200, [lease.to_item() for lease in leases])


def _handle_get(lease_id: str, c: Components) -> Dict[str, Any]:
    lease = c.store.require_lease_by_id(lease_id)
    return _response(200, lease.to_item())


def _route(event: Dict[str, Any]) -> Dict[str, Any]:
    method, path = _path_method(event)
    if method == "OPTIONS":
        return _response(200, {"success": True})

    logger.info("[INFO] route method=%s path=%s", method, path)
    path = path.rstrip("/") or "/"

    try:
        c = _components()
        if path == "/leases":
            if method == "POST":
                return _handle_create(event, c)
            if method == "DELETE":
                return _handle_delete(event, c)
            if method == "GET":
                return _handle_list(event, c)
        match_get = _LEASE_ID_PATH.fullmatch(path)
        if method == "GET" and match_get:
            return _handle_get(match_get.group(1), c)
    except LeasePoolError as exc:
        logger.warning("[WARNING] %s %s failed: %s", method, path, exc)
        return error_response(exc)

    return _error(404, f"Unsupported route: {method} {path}")


def lambda_handler(event: Dict[str, Any], _context: Any) -> Dict[str, Any]:
    result = _route(event)
    logger.info("[END] leases: %s", json.dumps({"statusCode": result.get("statusCode")}))
    return result
