"""leasepool_shared.fanout — Continue-past-failure batch dispatch.

``FanoutInvoker.run`` calls one operation per item. A failing item never
stops its siblings; once every item has been attempted, all failures are
raised together as one ``AggregateError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, List, Optional, TypeVar

from .errors import STORAGE_ERRORS, AggregateError, ConfigurationError, StorageFault
from .models import Lease, LeaseStatus, lease_log_id
from .notifications import lease_message

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FanoutInvoker:
    def __init__(self, name: str):
        self.name = name

    def run(
        self,
        items: Iterable[T],
        operation: Callable[[T], Any],
        describe: Callable[[T], str] = str,
    ) -> int:
        """Dispatch every item; return how many succeeded."""
        errors: List[Exception] = []
        succeeded = 0
        for item in items:
            try:
                operation(item)
                succeeded += 1
            except Exception as exc:
                logger.error("[ERROR] %s failed for %s: %s", self.name, describe(item), exc)
                errors.append(exc)
        if errors:
            raise AggregateError(f"{self.name}: {len(errors)} item(s) failed", errors)
        return succeeded


def fan_out_budget_checks(
    store,
    lambda_client,
    function_name: str,
    invoker: Optional[FanoutInvoker] = None,
) -> int:
    """Invoke the budget-check function asynchronously once per Active lease."""
    if not function_name:
        raise ConfigurationError("Budget check function name is not configured")
    invoker = invoker or FanoutInvoker("fan_out_check_budget")
    leases = store.find_leases_by_status(LeaseStatus.ACTIVE)
    logger.info("[INFO] Fanning out budget checks for %d active lease(s)", len(leases))

    def invoke(lease: Lease) -> None:
        try:
            lambda_client.invoke(
                FunctionName=function_name,
                InvocationType="Event",
                Payload=json.dumps(lease_message(lease)).encode("utf-8"),
            )
        except STORAGE_ERRORS as exc:
            raise StorageFault(f"Failed to invoke {function_name} for lease {lease_log_id(lease)}: {exc}") from exc

    return invoker.run(leases, invoke, describe=lease_log_id)
