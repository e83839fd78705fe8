"""fan_out_check_budget Lambda — scheduled budget-check fan-out.

Lists every Active lease and invokes UPDATE_LEASE_STATUS_FUNCTION_NAME
asynchronously once per lease, with the lease record as payload. One failed
invocation does not stop the others.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from leasepool_shared.aws_clients import AwsClients
from leasepool_shared.config import Settings
from leasepool_shared.errors import AggregateError
from leasepool_shared.fanout import fan_out_budget_checks
from leasepool_shared.state_store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_wiring: Optional[Tuple[Settings, AwsClients, StateStore]] = None


def _get_wiring() -> Tuple[Settings, AwsClients, StateStore]:
    global _wiring
    if _wiring is None:
        settings = Settings.from_env()
        clients = AwsClients(settings)
        _wiring = (settings, clients, StateStore.from_settings(settings, clients))
    return _wiring


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    settings, clients, store = _get_wiring()
    result: Dict[str, Any] = {"success": True, "invoked": 0, "errors": []}
    try:
        result["invoked"] = fan_out_budget_checks(
            store,
            clients.lambda_,
            settings.require("update_lease_status_function_name"),
        )
    except AggregateError as exc:
        logger.error("[ERROR] Budget check fan-out finished with failures: %s", exc)
        result["success"] = False
        result["errors"] = [str(err) for err in exc.errors]
    logger.info("[END] Fan out check budget: %s", json.dumps(result))
    return result
