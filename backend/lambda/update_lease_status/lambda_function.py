"""update_lease_status Lambda — expiry and budget check for one lease.

Invoked asynchronously by fan_out_check_budget with a lease record as the
event. The budget checker may attach ``ActualSpend``; when it does, a lease
whose spend reaches its budget is decommissioned as OverBudget. A lease past
its ``ExpiresOn`` is decommissioned as Expired.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from leasepool_shared.account_pool import AccountPool
from leasepool_shared.aws_clients import AwsClients
from leasepool_shared.config import Settings
from leasepool_shared.errors import LeasePoolError
from leasepool_shared.models import Lease
from leasepool_shared.notifications import Notifier, ResetQueue
from leasepool_shared.provisioner import LeaseProvisioner
from leasepool_shared.state_store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_provisioner: Optional[LeaseProvisioner] = None


def _get_provisioner() -> LeaseProvisioner:
    global _provisioner
    if _provisioner is None:
        settings = Settings.from_env()
        clients = AwsClients(settings)
        store = StateStore.from_settings(settings, clients)
        notifier = Notifier(clients.sns)
        reset_queue = ResetQueue(clients.sqs, settings.reset_queue_url)
        _provisioner = LeaseProvisioner(store, AccountPool(store), notifier, reset_queue, settings)
    return _provisioner


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    try:
        lease = Lease.from_item(event)
    except (KeyError, ValueError, TypeError) as exc:
        logger.error("[ERROR] Invalid lease payload: %s", exc)
        failure = {"success": False, "error": f"Invalid lease payload: {exc}"}
        logger.info("[END] Update lease status: %s", json.dumps(failure))
        return failure

    actual_spend = event.get("ActualSpend")
    result: Dict[str, Any] = {
        "success": True,
        "account_id": lease.account_id,
        "principal_id": lease.principal_id,
        "decommissioned": None,
    }
    try:
        reason = _get_provisioner().check_lease_status(
            lease,
            actual_spend=float(actual_spend) if actual_spend is not None else None,
        )
    except LeasePoolError as exc:
        logger.error("[ERROR] Failed to update lease %s @ %s: %s", lease.principal_id, lease.account_id, exc)
        result["success"] = False
        result["error"] = str(exc)
    else:
        result["decommissioned"] = reason.value if reason else None
    logger.info("[END] Update lease status: %s", json.dumps(result))
    return result
