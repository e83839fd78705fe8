"""leasepool_shared.state_store — Account / Lease persistence on DynamoDB.

This is the only module that writes status attributes. Every status change
goes through a single-record conditional update (compare-and-swap on the
status attribute); first-time records are created with an
``attribute_not_exists`` guard so they can never clobber an existing key.

Tables:
    Accounts  hash key Id;                  GSI AccountStatus
    Leases    hash key AccountId, range PrincipalId;
              GSIs PrincipalId, LeaseStatus, LeaseId (on Id)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .config import Settings
from .errors import (
    STORAGE_ERRORS,
    InvariantViolation,
    NotFound,
    StorageFault,
    translate_client_error,
)
from .models import Account, AccountStatus, Lease, LeaseStatus, LeaseStatusReason
from .serialization import deserialize_item, emit_structured_event, serialize_item, serialize_value, unix_now

logger = logging.getLogger(__name__)

ACCOUNT_STATUS_INDEX = "AccountStatus"
LEASE_PRINCIPAL_INDEX = "PrincipalId"
LEASE_STATUS_INDEX = "LeaseStatus"
LEASE_ID_INDEX = "LeaseId"


class StateStore:
    def __init__(
        self,
        ddb,
        account_table: str,
        lease_table: str,
        *,
        consistent_read: bool = False,
        clock: Callable[[], int] = unix_now,
    ):
        self._ddb = ddb
        self.account_table = account_table
        self.lease_table = lease_table
        self._consistent_read = consistent_read
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clients, clock: Callable[[], int] = unix_now) -> "StateStore":
        return cls(
            clients.dynamodb,
            settings.account_table,
            settings.lease_table,
            consistent_read=settings.consistent_read,
            clock=clock,
        )

    def now(self) -> int:
        return int(self._clock())

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _get_item(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            resp = self._ddb.get_item(
                TableName=table,
                Key=serialize_item(key),
                ConsistentRead=self._consistent_read,
            )
        except STORAGE_ERRORS as exc:
            raise StorageFault(f"Failed reading {table} item {key}: {exc}") from exc
        raw = resp.get("Item")
        if not raw:
            return None
        return deserialize_item(raw)

    def _query(
        self,
        table: str,
        key_name: str,
        key_value: str,
        index: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "TableName": table,
            "KeyConditionExpression": "#pk = :pk",
            "ExpressionAttributeNames": {"#pk": key_name},
            "ExpressionAttributeValues": {":pk": serialize_value(key_value)},
        }
        if index:
            params["IndexName"] = index
        elif self._consistent_read:
            # Global secondary indexes do not support consistent reads.
            params["ConsistentRead"] = True

        items: List[Dict[str, Any]] = []
        try:
            resp = self._ddb.query(**params)
            items.extend(resp.get("Items", []))
            while resp.get("LastEvaluatedKey"):
                resp = self._ddb.query(ExclusiveStartKey=resp["LastEvaluatedKey"], **params)
                items.extend(resp.get("Items", []))
        except STORAGE_ERRORS as exc:
            raise StorageFault(f"Failed querying {table} by {key_name}={key_value}: {exc}") from exc
        return [deserialize_item(raw) for raw in items]

    def _put_new(self, table: str, item: Dict[str, Any], hash_key: str, describe: str) -> None:
        try:
            self._ddb.put_item(
                TableName=table,
                Item=serialize_item(item),
                ConditionExpression="attribute_not_exists(#hk)",
                ExpressionAttributeNames={"#hk": hash_key},
            )
        except STORAGE_ERRORS as exc:
            raise translate_client_error(
                exc,
                f"{describe} already exists",
                f"Failed creating {describe}",
            ) from exc

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        item = self._get_item(self.account_table, {"Id": account_id})
        return Account.from_item(item) if item else None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise NotFound(f"Account {account_id} not found")
        return account

    def find_accounts_by_status(self, status: AccountStatus) -> List[Account]:
        items = self._query(
            self.account_table,
            "AccountStatus",
            AccountStatus(status).value,
            index=ACCOUNT_STATUS_INDEX,
        )
        return [Account.from_item(item) for item in items]

    def get_ready_account(self) -> Optional[Account]:
        """Return any one Ready account, or None if the pool is empty.

        Concurrent callers may receive the same account; the Ready -> Leased
        transition decides who actually gets it.
        """
        accounts = self.find_accounts_by_status(AccountStatus.READY)
        return accounts[0] if accounts else None

    def put_account(self, account: Account) -> Account:
        now = self.now()
        if not account.created_on:
            account.created_on = now
        account.last_modified_on = now
        self._put_new(self.account_table, account.to_item(), "Id", f"Account {account.id}")
        return account

    def transition_account_status(
        self,
        account_id: str,
        prev_status: AccountStatus,
        next_status: AccountStatus,
    ) -> Account:
        prev_value = AccountStatus(prev_status).value
        next_value = AccountStatus(next_status).value
        try:
            resp = self._ddb.update_item(
                TableName=self.account_table,
                Key=serialize_item({"Id": account_id}),
                UpdateExpression="SET #status = :next_status, LastModifiedOn = :now",
                ConditionExpression="#status = :prev_status",
                ExpressionAttributeNames={"#status": "AccountStatus"},
                ExpressionAttributeValues={
                    ":prev_status": serialize_value(prev_value),
                    ":next_status": serialize_value(next_value),
                    ":now": serialize_value(self.now()),
                },
                ReturnValues="ALL_NEW",
            )
        except STORAGE_ERRORS as exc:
            raise translate_client_error(
                exc,
                f'unable to update account status from "{prev_value}" to "{next_value}" '
                f'for account {account_id}: no account exists with Status="{prev_value}"',
                f"Failed transitioning account {account_id}",
            ) from exc

        emit_structured_event(
            component="state_store",
            event="account_status_transition",
            extra={"account_id": account_id, "from_status": prev_value, "to_status": next_value},
        )
        return Account.from_item(deserialize_item(resp["Attributes"]))

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def get_lease(self, account_id: str, principal_id: str) -> Optional[Lease]:
        item = self._get_item(self.lease_table, {"AccountId": account_id, "PrincipalId": principal_id})
        return Lease.from_item(item) if item else None

    def get_lease_by_id(self, lease_id: str) -> Optional[Lease]:
        items = self._query(self.lease_table, "Id", lease_id, index=LEASE_ID_INDEX)
        if not items:
            return None
        if len(items) > 1:
            raise InvariantViolation(f"Found more than one Lease with id: {lease_id}")
        return Lease.from_item(items[0])

    def require_lease_by_id(self, lease_id: str) -> Lease:
        lease = self.get_lease_by_id(lease_id)
        if lease is None:
            raise NotFound(f"No Lease found with id: {lease_id}")
        return lease

    def find_leases_by_account(self, account_id: str) -> List[Lease]:
        items = self._query(self.lease_table, "AccountId", account_id)
        return [Lease.from_item(item) for item in items]

    def find_leases_by_principal(self, principal_id: str) -> List[Lease]:
        items = self._query(self.lease_table, "PrincipalId", principal_id, index=LEASE_PRINCIPAL_INDEX)
        return [Lease.from_item(item) for item in items]

    def find_leases_by_status(self, status: LeaseStatus) -> List[Lease]:
        items = self._query(
            self.lease_table,
            "LeaseStatus",
            LeaseStatus(status).value,
            index=LEASE_STATUS_INDEX,
        )
        return [Lease.from_item(item) for item in items]

    def put_lease(self, lease: Lease) -> Lease:
        self._put_new(
            self.lease_table,
            lease.to_item(),
            "AccountId",
            f"Lease {lease.principal_id} @ {lease.account_id}",
        )
        return lease

    def transition_lease_status(
        self,
        account_id: str,
        principal_id: str,
        prev_status: LeaseStatus,
        next_status: LeaseStatus,
        reason: LeaseStatusReason,
    ) -> Lease:
        prev_value = LeaseStatus(prev_status).value
        next_value = LeaseStatus(next_status).value
        reason_value = LeaseStatusReason(reason).value
        now = self.now()
        try:
            resp = self._ddb.update_item(
                TableName=self.lease_table,
                Key=serialize_item({"AccountId": account_id, "PrincipalId": principal_id}),
                UpdateExpression=(
                    "SET #status = :next_status, LeaseStatusReason = :reason, "
                    "LastModifiedOn = :now, LeaseStatusModifiedOn = :now"
                ),
                ConditionExpression="#status = :prev_status",
                ExpressionAttributeNames={"#status": "LeaseStatus"},
                ExpressionAttributeValues={
                    ":prev_status": serialize_value(prev_value),
                    ":next_status": serialize_value(next_value),
                    ":reason": serialize_value(reason_value),
                    ":now": serialize_value(now),
                },
                ReturnValues="ALL_NEW",
            )
        except STORAGE_ERRORS as exc:
            raise translate_client_error(
                exc,
                f'unable to update lease status from "{prev_value}" to "{next_value}" '
                f'for {account_id}/{principal_id}: no lease exists with Status="{prev_value}"',
                f"Failed transitioning lease {principal_id} @ {account_id}",
            ) from exc

        emit_structured_event(
            component="state_store",
            event="lease_status_transition",
            extra={
                "account_id": account_id,
                "principal_id": principal_id,
                "from_status": prev_value,
                "to_status": next_value,
                "reason": reason_value,
            },
        )
        return Lease.from_item(deserialize_item(resp["Attributes"]))

