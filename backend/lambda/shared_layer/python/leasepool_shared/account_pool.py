"""leasepool_shared.account_pool — Pool-level queries and account registration."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from .errors import NoAccountsAvailable, ValidationError
from .models import Account, AccountStatus, Lease, LeaseStatus
from .notifications import Notifier, ResetQueue
from .state_store import StateStore

logger = logging.getLogger(__name__)

_ACCOUNT_ID_RE = re.compile(r"^\d{12}$")


class AccountPool:
    def __init__(
        self,
        store: StateStore,
        notifier: Optional[Notifier] = None,
        reset_queue: Optional[ResetQueue] = None,
        account_created_topic_arn: str = "",
    ):
        self.store = store
        self._notifier = notifier
        self._reset_queue = reset_queue
        self._account_created_topic_arn = account_created_topic_arn

    def ready_account(self) -> Account:
        account = self.store.get_ready_account()
        if account is None:
            raise NoAccountsAvailable("No Available accounts at this moment")
        return account

    def accounts_by_status(self, status: AccountStatus) -> List[Account]:
        return self.store.find_accounts_by_status(status)

    def leases_by_account(self, account_id: str) -> List[Lease]:
        return self.store.find_leases_by_account(account_id)

    def leases_by_principal(self, principal_id: str) -> List[Lease]:
        return self.store.find_leases_by_principal(principal_id)

    def leases_by_status(self, status: LeaseStatus) -> List[Lease]:
        return self.store.find_leases_by_status(status)

    def register_account(
        self,
        account_id: str,
        admin_role_arn: str,
        principal_role_arn: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Account:
        """Add a new account to the pool in NotReady and queue it for reset.

        The account only becomes leasable once the reset pipeline finishes
        and calls ``mark_account_ready``.
        """
        if not _ACCOUNT_ID_RE.match(account_id or ""):
            raise ValidationError(f"Invalid account id: {account_id!r}")
        if not admin_role_arn:
            raise ValidationError("adminRoleArn is required")

        account = Account(
            id=account_id,
            status=AccountStatus.NOT_READY,
            admin_role_arn=admin_role_arn,
            principal_role_arn=principal_role_arn,
            metadata=dict(metadata or {}),
        )
        self.store.put_account(account)
        logger.info("[INFO] Registered account %s as NotReady", account_id)

        if self._reset_queue is not None:
            self._reset_queue.enqueue(account_id)
        if self._notifier is not None and self._account_created_topic_arn:
            self._notifier.publish(self._account_created_topic_arn, account.to_item())
        return account

    def mark_account_ready(self, account_id: str) -> Account:
        return self.store.transition_account_status(account_id, AccountStatus.NOT_READY, AccountStatus.READY)
