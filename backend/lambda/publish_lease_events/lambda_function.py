"""publish_lease_events Lambda — lease status change notifications.

Triggered by DynamoDB Streams on the lease table, either directly or through
an EventBridge Pipe -> SQS. Transitions into a locked state go to
LEASE_LOCKED_TOPIC_ARN, transitions back to Active go to
LEASE_UNLOCKED_TOPIC_ARN (see ``leasepool_shared.event_router`` for the
LEASE_STATUS_MODEL rules).

Returns ``batchItemFailures`` so the event source only redelivers records
whose publish failed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from leasepool_shared.aws_clients import AwsClients
from leasepool_shared.config import Settings
from leasepool_shared.event_router import ChangeEventRouter
from leasepool_shared.notifications import Notifier
from leasepool_shared.state_store import StateStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

_router: Optional[ChangeEventRouter] = None


def _get_router() -> ChangeEventRouter:
    global _router
    if _router is None:
        settings = Settings.from_env()
        clients = AwsClients(settings)
        store = StateStore.from_settings(settings, clients)
        _router = ChangeEventRouter.from_settings(settings, Notifier(clients.sns), store=store)
    return _router


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    result = _get_router().handle(event).to_dict()
    logger.info("[END] Publish lease events: %s", json.dumps(result))
    return result
