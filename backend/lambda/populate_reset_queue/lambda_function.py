"""populate_reset_queue Lambda — scheduled reset sweep.

Triggered by a CloudWatch schedule. Puts every NotReady account back on the
reset queue and releases FinanceLock holds on those accounts. Failed
accounts are reported in the result and picked up again on the next run.

Environment variables:
  ACCOUNT_DB       DynamoDB account table
  LEASE_DB         DynamoDB lease table
  RESET_SQS_URL    Reset queue URL
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from leasepool_shared.aws_clients import AwsClients
from leasepool_shared.config import Settings
from leasepool_shared.errors import AggregateError
from leasepool_shared.notifications import ResetQueue
from leasepool_shared.reset_dispatcher import ResetDispatcher
from leasepool_shared.state_store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_dispatcher: Optional[ResetDispatcher] = None


def _get_dispatcher() -> ResetDispatcher:
    global _dispatcher
    if _dispatcher is None:
        settings = Settings.from_env()
        clients = AwsClients(settings)
        store = StateStore.from_settings(settings, clients)
        reset_queue = ResetQueue(clients.sqs, settings.require("reset_queue_url"))
        _dispatcher = ResetDispatcher(store, reset_queue)
    return _dispatcher


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {"success": True, "dispatched": 0, "errors": []}
    try:
        result["dispatched"] = _get_dispatcher().sweep()
    except AggregateError as exc:
        logger.error("[ERROR] Reset sweep finished with failures: %s", exc)
        result["success"] = False
        result["errors"] = [str(err) for err in exc.errors]
    logger.info("[END] Populate reset queue: %s", json.dumps(result))
    return result
