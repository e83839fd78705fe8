"""leasepool_shared.models — Account and Lease records and their status enums.

Attribute names match the DynamoDB tables (``Id``, ``AccountStatus``,
``LeaseStatus`` ...); ``to_item``/``from_item`` convert between the typed
records and plain dicts keyed by those names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AccountStatus(str, Enum):
    NOT_READY = "NotReady"
    READY = "Ready"
    LEASED = "Leased"


class LeaseStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    # Hold states, only reachable from Active.
    FINANCE_LOCK = "FinanceLock"
    RESET_LOCK = "ResetLock"
    # Same as ResetLock, but the lease was in FinanceLock beforehand.
    RESET_FINANCE_LOCK = "ResetFinanceLock"


HOLD_STATUSES = frozenset(
    {
        LeaseStatus.FINANCE_LOCK.value,
        LeaseStatus.RESET_LOCK.value,
        LeaseStatus.RESET_FINANCE_LOCK.value,
    }
)


class LeaseStatusReason(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"
    OVER_BUDGET = "OverBudget"
    DESTROYED = "Destroyed"
    ROLLBACK = "Rollback"


@dataclass
class Account:
    id: str
    status: AccountStatus
    admin_role_arn: str = ""
    principal_role_arn: str = ""
    principal_policy_hash: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_on: int = 0
    last_modified_on: int = 0

    def to_item(self) -> Dict[str, Any]:
        return {
            "Id": self.id,
            "AccountStatus": AccountStatus(self.status).value,
            "AdminRoleArn": self.admin_role_arn,
            "PrincipalRoleArn": self.principal_role_arn,
            "PrincipalPolicyHash": self.principal_policy_hash,
            "Metadata": dict(self.metadata),
            "CreatedOn": int(self.created_on),
            "LastModifiedOn": int(self.last_modified_on),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Account":
        return cls(
            id=str(item["Id"]),
            status=AccountStatus(item["AccountStatus"]),
            admin_role_arn=item.get("AdminRoleArn") or "",
            principal_role_arn=item.get("PrincipalRoleArn") or "",
            principal_policy_hash=item.get("PrincipalPolicyHash") or "",
            metadata=dict(item.get("Metadata") or {}),
            created_on=int(item.get("CreatedOn") or 0),
            last_modified_on=int(item.get("LastModifiedOn") or 0),
        )


@dataclass
class Lease:
    account_id: str
    principal_id: str
    id: str = ""
    status: LeaseStatus = LeaseStatus.ACTIVE
    status_reason: LeaseStatusReason = LeaseStatusReason.ACTIVE
    budget_amount: float = 0.0
    budget_currency: str = "USD"
    budget_notification_emails: List[str] = field(default_factory=list)
    created_on: int = 0
    last_modified_on: int = 0
    status_modified_on: int = 0
    expires_on: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == LeaseStatus.ACTIVE

    def to_item(self) -> Dict[str, Any]:
        return {
            "AccountId": self.account_id,
            "PrincipalId": self.principal_id,
            "Id": self.id,
            "LeaseStatus": LeaseStatus(self.status).value,
            "LeaseStatusReason": LeaseStatusReason(self.status_reason).value,
            "BudgetAmount": float(self.budget_amount),
            "BudgetCurrency": self.budget_currency,
            "BudgetNotificationEmails": list(self.budget_notification_emails),
            "CreatedOn": int(self.created_on),
            "LastModifiedOn": int(self.last_modified_on),
            "LeaseStatusModifiedOn": int(self.status_modified_on),
            "ExpiresOn": int(self.expires_on),
            "Metadata": dict(self.metadata),
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Lease":
        reason = item.get("LeaseStatusReason") or LeaseStatusReason.ACTIVE.value
        return cls(
            account_id=str(item["AccountId"]),
            principal_id=str(item["PrincipalId"]),
            id=str(item.get("Id") or ""),
            status=LeaseStatus(item["LeaseStatus"]),
            status_reason=LeaseStatusReason(reason),
            budget_amount=float(item.get("BudgetAmount") or 0.0),
            budget_currency=item.get("BudgetCurrency") or "USD",
            budget_notification_emails=list(item.get("BudgetNotificationEmails") or []),
            created_on=int(item.get("CreatedOn") or 0),
            last_modified_on=int(item.get("LastModifiedOn") or 0),
            status_modified_on=int(item.get("LeaseStatusModifiedOn") or 0),
            expires_on=int(item.get("ExpiresOn") or 0),
            metadata=dict(item.get("Metadata") or {}),
        )


def lease_log_id(lease: Optional[Lease]) -> str:
    if lease is None:
        return "<none>"
    return f"{lease.principal_id} @ {lease.account_id}"
