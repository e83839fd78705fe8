"""leasepool_shared.provisioner — Lease provisioning and decommissioning.

Provisioning:
    1. reject a principal that already holds a lease which is not Inactive
    2. pick a Ready account
    3. decide between reusing the principal's old lease on it or creating one
    4. account Ready -> Leased                 (lost race: abort, nothing to undo)
    5. activate the lease                      (undo: retire the lease, release the account)
    6. publish to the lease-added topic        (undo: retire the lease, release the account)

Steps 4-6 run as a ``Saga``; compensations run newest first.

Decommissioning retires the lease, returns the account to NotReady, queues it
for reset and publishes the lease snapshot. The first two steps abort the run
on failure; the queue and publish steps are best effort because the reset
sweep re-discovers every NotReady account on its next run.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .account_pool import AccountPool
from .config import Settings
from .errors import (
    CompensationFailure,
    ConditionFailure,
    InvariantViolation,
    NotFound,
    PrincipalBusy,
    ValidationError,
)
from .models import AccountStatus, Lease, LeaseStatus, LeaseStatusReason, lease_log_id
from .notifications import Notifier, ResetQueue
from .saga import Saga
from .state_store import StateStore
from .tasks import MultiStepTaskRunner

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class LeaseRequest:
    principal_id: str
    budget_amount: float = 0.0
    budget_currency: str = "USD"
    budget_notification_emails: List[str] = field(default_factory=list)
    expires_on: int = 0


def validate_lease_request(body: Any, settings: Settings, now: int) -> LeaseRequest:
    """Parse and check a lease request body. Raises ValidationError."""
    if not isinstance(body, dict):
        raise ValidationError("Failed to parse request body")

    principal_id = body.get("principalId")
    if not principal_id or not isinstance(principal_id, str):
        raise ValidationError("principalId is required")

    try:
        budget_amount = float(body.get("budgetAmount") or 0)
        expires_on = int(body.get("expiresOn") or 0)
    except (TypeError, ValueError) as exc:
        raise ValidationError("budgetAmount and expiresOn must be numbers") from exc

    if budget_amount <= 0:
        raise ValidationError("budgetAmount must be greater than zero")
    if budget_amount > settings.max_lease_budget_amount:
        raise ValidationError(
            f"Requested lease has a budget amount of {budget_amount:.2f}, which is greater "
            f"than max lease budget amount of {settings.max_lease_budget_amount:.2f}"
        )

    if not expires_on:
        expires_on = now + settings.default_lease_length_in_days * SECONDS_PER_DAY
    elif expires_on <= now:
        raise ValidationError(f"Requested lease has a desired expiry date less than today: {expires_on}")
    max_expires_on = now + settings.max_lease_period
    if expires_on > max_expires_on:
        raise ValidationError(
            f"Requested lease has an expiry of {expires_on}, which is greater than "
            f"max lease period of {max_expires_on}"
        )

    emails = body.get("budgetNotificationEmails") or []
    if not isinstance(emails, list) or not all(isinstance(e, str) for e in emails):
        raise ValidationError("budgetNotificationEmails must be a list of strings")

    return LeaseRequest(
        principal_id=principal_id,
        budget_amount=budget_amount,
        budget_currency=str(body.get("budgetCurrency") or "USD"),
        budget_notification_emails=list(emails),
        expires_on=expires_on,
    )


class LeaseProvisioner:
    def __init__(
        self,
        store: StateStore,
        pool: AccountPool,
        notifier: Notifier,
        reset_queue: ResetQueue,
        settings: Settings,
    ):
        self.store = store
        self.pool = pool
        self._notifier = notifier
        self._reset_queue = reset_queue
        self._settings = settings

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def find_active_lease_for_principal(self, principal_id: str) -> Optional[Lease]:
        for lease in self.pool.leases_by_principal(principal_id):
            if lease.status != LeaseStatus.INACTIVE:
                return lease
        return None

    def find_lease_with_account(self, principal_id: str, account_id: str) -> Optional[Lease]:
        """Return the principal's previous lease on the account, if any.

        A Ready account must not carry a live lease; finding one means the
        account and lease tables disagree.
        """
        match: Optional[Lease] = None
        for lease in self.pool.leases_by_account(account_id):
            if lease.status != LeaseStatus.INACTIVE:
                raise InvariantViolation(
                    f"Attempt to lease Active Account as new lease - {account_id} "
                    f"(held by {lease.principal_id} in {lease.status.value})"
                )
            if lease.principal_id == principal_id:
                match = lease
        return match

    def activate_lease(
        self,
        create: bool,
        principal_id: str,
        account_id: str,
        budget_amount: float = 0.0,
        budget_currency: str = "USD",
        budget_notification_emails: Optional[List[str]] = None,
        expires_on: int = 0,
    ) -> Lease:
        if not create:
            logger.info("[INFO] Reactivating existing lease for %s @ %s", principal_id, account_id)
            return self.store.transition_lease_status(
                account_id,
                principal_id,
                LeaseStatus.INACTIVE,
                LeaseStatus.ACTIVE,
                LeaseStatusReason.ACTIVE,
            )

        logger.info("[INFO] Creating new lease for %s @ %s", principal_id, account_id)
        now = self.store.now()
        lease = Lease(
            account_id=account_id,
            principal_id=principal_id,
            id=str(uuid.uuid4()),
            status=LeaseStatus.ACTIVE,
            status_reason=LeaseStatusReason.ACTIVE,
            budget_amount=budget_amount,
            budget_currency=budget_currency or "USD",
            budget_notification_emails=list(budget_notification_emails or []),
            created_on=now,
            last_modified_on=now,
            status_modified_on=now,
            expires_on=expires_on or now + self._settings.default_lease_length_in_days * SECONDS_PER_DAY,
        )
        return self.store.put_lease(lease)

    def rollback_provision_account(self, revert_account_status: bool, principal_id: str, account_id: str) -> None:
        """Undo a provisioning attempt.

        Both transitions are attempted regardless of each other. The lease
        error wins over the account error when both fail.
        """
        lease_error: Optional[Exception] = None
        account_error: Optional[Exception] = None
        try:
            self.store.transition_lease_status(
                account_id,
                principal_id,
                LeaseStatus.ACTIVE,
                LeaseStatus.INACTIVE,
                LeaseStatusReason.ROLLBACK,
            )
        except Exception as exc:
            logger.error("[ERROR] Rollback of lease %s @ %s failed: %s", principal_id, account_id, exc)
            lease_error = exc

        if revert_account_status:
            try:
                self.store.transition_account_status(account_id, AccountStatus.LEASED, AccountStatus.READY)
            except Exception as exc:
                logger.error("[ERROR] Rollback of account %s failed: %s", account_id, exc)
                account_error = exc

        if lease_error is not None:
            raise lease_error
        if account_error is not None:
            raise account_error

    def _undo_provision(self, principal_id: str, account_id: str) -> None:
        """Full rollback once the account has been reserved.

        A failed condition only counts as a rollback failure when the pair is
        still left Active / Leased afterwards.
        """
        try:
            self.rollback_provision_account(True, principal_id, account_id)
        except ConditionFailure:
            lease = self.store.get_lease(account_id, principal_id)
            account = self.store.get_account(account_id)
            if lease is not None and lease.status == LeaseStatus.ACTIVE:
                raise
            if account is not None and account.status == AccountStatus.LEASED:
                raise
            logger.info("[INFO] Rollback of %s @ %s had nothing left to undo", principal_id, account_id)

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision_lease(self, request: LeaseRequest) -> Lease:
        principal_id = request.principal_id

        busy = self.find_active_lease_for_principal(principal_id)
        if busy is not None:
            raise PrincipalBusy(f"Principal already has an active lease: {busy.account_id}")

        account = self.pool.ready_account()
        account_id = account.id
        logger.info("[INFO] Principal %s will be leased account %s", principal_id, account_id)

        prior = self.find_lease_with_account(principal_id, account_id)
        state: Dict[str, Lease] = {}

        def reserve_account():
            self.store.transition_account_status(account_id, AccountStatus.READY, AccountStatus.LEASED)

        def undo():
            self._undo_provision(principal_id, account_id)

        def activate():
            # The write may have landed even when the call reports an error.
            try:
                state["lease"] = self.activate_lease(
                    prior is None,
                    principal_id,
                    account_id,
                    budget_amount=request.budget_amount,
                    budget_currency=request.budget_currency,
                    budget_notification_emails=request.budget_notification_emails,
                    expires_on=request.expires_on,
                )
            except Exception as exc:
                try:
                    undo()
                except Exception as undo_exc:
                    logger.error("[ERROR] Rollback after failed activation failed: %s", undo_exc)
                    raise CompensationFailure(f"provision {principal_id} @ {account_id} rollback failed", exc, [undo_exc]) from exc
                raise

        def publish():
            self._notifier.publish_lease(self._settings.lease_added_topic_arn, state["lease"])

        saga = Saga(f"provision {principal_id} @ {account_id}")
        saga.step("reserve_account", reserve_account)
        saga.step("activate_lease", activate, undo)
        saga.step("publish_lease_added", publish)
        saga.run()

        lease = state["lease"]
        logger.info("[INFO] Provisioned lease %s (%s)", lease.id, lease_log_id(lease))
        return lease

    # ------------------------------------------------------------------
    # Decommissioning
    # ------------------------------------------------------------------

    def decommission_lease(
        self,
        principal_id: str,
        account_id: str,
        reason: LeaseStatusReason = LeaseStatusReason.DESTROYED,
    ) -> Lease:
        reason = LeaseStatusReason(reason)
        lease = self.store.get_lease(account_id, principal_id)
        if lease is None:
            raise NotFound(f"No lease found for {principal_id} @ {account_id}")
        if lease.status != LeaseStatus.ACTIVE:
            raise ValidationError(
                f"Lease for {principal_id} @ {account_id} is not active (status {lease.status.value})"
            )

        def retire_lease(_ctx, current: Lease) -> None:
            updated = self.store.transition_lease_status(
                current.account_id,
                current.principal_id,
                LeaseStatus.ACTIVE,
                LeaseStatus.INACTIVE,
                reason,
            )
            current.status = updated.status
            current.status_reason = updated.status_reason
            current.last_modified_on = updated.last_modified_on
            current.status_modified_on = updated.status_modified_on

        def release_account(_ctx, current: Lease) -> None:
            self.store.transition_account_status(current.account_id, AccountStatus.LEASED, AccountStatus.NOT_READY)

        def enqueue_reset(_ctx, current: Lease) -> None:
            self._reset_queue.enqueue(current.account_id)

        def publish_removed(_ctx, current: Lease) -> None:
            self._notifier.publish_lease(self._settings.lease_removed_topic_arn, current)

        runner = MultiStepTaskRunner()
        runner.add_step("retire_lease", retire_lease, fail_on_error=True)
        runner.add_step("release_account", release_account, fail_on_error=True)
        runner.add_step("enqueue_reset", enqueue_reset)
        runner.add_step("publish_lease_removed", publish_removed)

        ok, fatal = runner.execute(self, lease)
        if fatal is not None:
            raise fatal
        if not ok:
            logger.warning(
                "[WARNING] Decommissioned %s with %d best-effort step failure(s): %s",
                lease_log_id(lease),
                len(runner.errors),
                "; ".join(str(err) for err in runner.errors),
            )
        else:
            logger.info("[INFO] Decommissioned %s (%s)", lease_log_id(lease), reason.value)
        return lease

    # ------------------------------------------------------------------
    # Expiry / budget checks
    # ------------------------------------------------------------------

    def check_lease_status(self, lease: Lease, actual_spend: Optional[float] = None) -> Optional[LeaseStatusReason]:
        """Decommission an Active lease that expired or ran over budget.

        Returns the reason used, or None when the lease was left alone.
        """
        if not lease.is_active:
            return None
        reason: Optional[LeaseStatusReason] = None
        if lease.expires_on and lease.expires_on <= self.store.now():
            reason = LeaseStatusReason.EXPIRED
        elif actual_spend is not None and lease.budget_amount and actual_spend >= lease.budget_amount:
            reason = LeaseStatusReason.OVER_BUDGET
        if reason is None:
            return None
        try:
            self.decommission_lease(lease.principal_id, lease.account_id, reason)
        except ValidationError:
            # Retired by someone else since the snapshot was taken.
            logger.info("[INFO] Lease %s no longer active, skipping", lease_log_id(lease))
            return None
        return reason
