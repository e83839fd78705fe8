"""leasepool_shared.reset_dispatcher — Scheduled sweep over NotReady accounts.

Every NotReady account is put back on the reset queue, and any lease on it
still held in FinanceLock is moved back to Active. Accounts are independent:
a failure on one is reported at the end of the sweep and retried on the next
scheduled run.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import AggregateError
from .fanout import FanoutInvoker
from .models import Account, AccountStatus, LeaseStatus, LeaseStatusReason
from .notifications import ResetQueue
from .state_store import StateStore

logger = logging.getLogger(__name__)


class ResetDispatcher:
    def __init__(self, store: StateStore, reset_queue: ResetQueue, invoker: Optional[FanoutInvoker] = None):
        self.store = store
        self._reset_queue = reset_queue
        self._invoker = invoker or FanoutInvoker("populate_reset_queue")

    def release_finance_locks(self, account_id: str) -> int:
        released = 0
        for lease in self.store.find_leases_by_account(account_id):
            if lease.status != LeaseStatus.FINANCE_LOCK:
                continue
            self.store.transition_lease_status(
                lease.account_id,
                lease.principal_id,
                LeaseStatus.FINANCE_LOCK,
                LeaseStatus.ACTIVE,
                LeaseStatusReason.ACTIVE,
            )
            logger.info("[INFO] Released finance lock on %s @ %s", lease.principal_id, lease.account_id)
            released += 1
        return released

    def dispatch_account(self, account: Account) -> None:
        """Queue the account and release its finance locks; both are always attempted."""
        errors: List[Exception] = []
        for step in (self._reset_queue.enqueue, self.release_finance_locks):
            try:
                step(account.id)
            except Exception as exc:
                errors.append(exc)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise AggregateError(f"account {account.id}", errors)

    def sweep(self) -> int:
        """Process every NotReady account; return how many succeeded.

        Raises AggregateError after the whole sweep if any account failed.
        """
        accounts = self.store.find_accounts_by_status(AccountStatus.NOT_READY)
        logger.info("[INFO] Found %d NotReady account(s) to reset", len(accounts))
        return self._invoker.run(accounts, self.dispatch_account, describe=lambda a: a.id)
