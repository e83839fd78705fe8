"""Shared pytest fixtures for the lease pool Lambdas and layer.

``FakeDynamoDB`` is a small stateful stand-in for the low-level DynamoDB
client. It stores raw attribute maps and understands exactly the expression
shapes ``StateStore`` issues:

    put_item     ConditionExpression "attribute_not_exists(#hk)"
    update_item  UpdateExpression "SET a = :x, #b = :y", ConditionExpression "#s = :v"
    query        KeyConditionExpression "#pk = :pk" (optionally paged)
"""

from __future__ import annotations

import copy
import importlib.util
import pathlib
import re
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

LAMBDA_ROOT = pathlib.Path(__file__).resolve().parent
LAYER_PATH = LAMBDA_ROOT / "shared_layer" / "python"
if str(LAYER_PATH) not in sys.path:
    sys.path.insert(0, str(LAYER_PATH))

from leasepool_shared.account_pool import AccountPool  # noqa: E402
from leasepool_shared.config import Settings  # noqa: E402
from leasepool_shared.models import Account, AccountStatus, Lease, LeaseStatus, LeaseStatusReason  # noqa: E402
from leasepool_shared.notifications import Notifier, ResetQueue  # noqa: E402
from leasepool_shared.provisioner import LeaseProvisioner  # noqa: E402
from leasepool_shared.state_store import StateStore  # noqa: E402

START_TIME = 1_700_000_000

_NOT_EXISTS_RE = re.compile(r"^attribute_not_exists\((#?\w+)\)$")
_EQUALS_RE = re.compile(r"^(#?\w+)\s*=\s*(:\w+)$")


def client_error(code: str, operation: str = "UpdateItem", message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


def load_lambda(directory: str, module_name: str):
    """Load ``<directory>/lambda_function.py`` under a unique module name."""
    path = LAMBDA_ROOT / directory / "lambda_function.py"
    spec = importlib.util.spec_from_file_location(module_name, path)
    module = importlib.util.module_from_spec(spec)
    assert spec and spec.loader
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


class FakeDynamoDB:
    def __init__(self, key_schema: Dict[str, Tuple[str, Optional[str]]], page_size: Optional[int] = None):
        self._schema = key_schema
        self._tables: Dict[str, Dict[Tuple, Dict[str, Any]]] = {name: {} for name in key_schema}
        self.page_size = page_size
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._failures: List[Tuple[str, Callable[[Dict[str, Any]], bool], Exception]] = []

    # -- test helpers ---------------------------------------------------

    def fail_when(self, method: str, predicate: Callable[[Dict[str, Any]], bool], exc: Exception) -> None:
        self._failures.append((method, predicate, exc))

    def raw_item(self, table: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        item = self._tables[table].get(self._key_tuple(table, key))
        return copy.deepcopy(item) if item is not None else None

    def items(self, table: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(item) for item in self._tables[table].values()]

    # -- internals ------------------------------------------------------

    def _record(self, method: str, kwargs: Dict[str, Any]) -> None:
        self.calls.append((method, copy.deepcopy(kwargs)))
        for name, predicate, exc in self._failures:
            if name == method and predicate(kwargs):
                raise exc

    def _key_tuple(self, table: str, key: Dict[str, Any]) -> Tuple:
        hash_key, range_key = self._schema[table]
        parts = [hash_key] + ([range_key] if range_key else [])
        return tuple(tuple(sorted(key[p].items())) for p in parts)

    def _key_of(self, table: str, item: Dict[str, Any]) -> Dict[str, Any]:
        hash_key, range_key = self._schema[table]
        key = {hash_key: item[hash_key]}
        if range_key:
            key[range_key] = item[range_key]
        return key

    @staticmethod
    def _name(token: str, names: Dict[str, str]) -> str:
        return names.get(token, token) if token.startswith("#") else token

    # -- client API -----------------------------------------------------

    def get_item(self, **kwargs):
        self._record("get_item", kwargs)
        item = self.raw_item(kwargs["TableName"], kwargs["Key"])
        return {"Item": item} if item is not None else {}

    def put_item(self, **kwargs):
        self._record("put_item", kwargs)
        table = kwargs["TableName"]
        item = copy.deepcopy(kwargs["Item"])
        key = self._key_tuple(table, self._key_of(table, item))
        condition = kwargs.get("ConditionExpression")
        if condition:
            match = _NOT_EXISTS_RE.match(condition)
            assert match, f"unsupported condition {condition!r}"
            if key in self._tables[table]:
                raise client_error("ConditionalCheckFailedException", "PutItem")
        self._tables[table][key] = item
        return {}

    def update_item(self, **kwargs):
        self._record("update_item", kwargs)
        table = kwargs["TableName"]
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        key = self._key_tuple(table, kwargs["Key"])
        existing = self._tables[table].get(key)

        condition = kwargs.get("ConditionExpression")
        if condition:
            match = _EQUALS_RE.match(condition.strip())
            assert match, f"unsupported condition {condition!r}"
            attr = self._name(match.group(1), names)
            if existing is None or existing.get(attr) != values[match.group(2)]:
                raise client_error("ConditionalCheckFailedException")

        updated = copy.deepcopy(existing) if existing is not None else copy.deepcopy(kwargs["Key"])
        expression = kwargs["UpdateExpression"].strip()
        assert expression.startswith("SET "), f"unsupported update {expression!r}"
        for clause in expression[4:].split(","):
            match = _EQUALS_RE.match(clause.strip())
            assert match, f"unsupported clause {clause!r}"
            updated[self._name(match.group(1), names)] = copy.deepcopy(values[match.group(2)])
        self._tables[table][key] = updated
        return {"Attributes": copy.deepcopy(updated)}

    def query(self, **kwargs):
        self._record("query", kwargs)
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        match = _EQUALS_RE.match(kwargs["KeyConditionExpression"].strip())
        assert match, "unsupported key condition"
        attr = self._name(match.group(1), names)
        wanted = values[match.group(2)]
        matches = [
            copy.deepcopy(item)
            for item in self._tables[kwargs["TableName"]].values()
            if item.get(attr) == wanted
        ]
        if not self.page_size:
            return {"Items": matches}
        start = int((kwargs.get("ExclusiveStartKey") or {}).get("offset", {}).get("N", "0"))
        page = matches[start:start + self.page_size]
        resp: Dict[str, Any] = {"Items": page}
        if start + self.page_size < len(matches):
            resp["LastEvaluatedKey"] = {"offset": {"N": str(start + self.page_size)}}
        return resp


class FakeClock:
    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class Seeder:
    """Writes fixture records straight through the store."""

    def __init__(self, store: StateStore):
        self.store = store

    def account(self, account_id: str = "111111111111", status: AccountStatus = AccountStatus.READY, **kwargs) -> Account:
        return self.store.put_account(Account(id=account_id, status=status, **kwargs))

    def lease(
        self,
        account_id: str = "111111111111",
        principal_id: str = "alice",
        status: LeaseStatus = LeaseStatus.ACTIVE,
        lease_id: Optional[str] = None,
        **kwargs,
    ) -> Lease:
        now = self.store.now()
        kwargs.setdefault("status_reason", LeaseStatusReason.ACTIVE)
        kwargs.setdefault("budget_amount", 100.0)
        kwargs.setdefault("expires_on", now + 7 * 86400)
        lease = Lease(
            account_id=account_id,
            principal_id=principal_id,
            id=lease_id or f"lease-{principal_id}-{account_id}",
            status=status,
            created_on=now,
            last_modified_on=now,
            status_modified_on=now,
            **kwargs,
        )
        return self.store.put_lease(lease)


@pytest.fixture
def ddb():
    return FakeDynamoDB({"Accounts": ("Id", None), "Leases": ("AccountId", "PrincipalId")})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(ddb, clock):
    return StateStore(ddb, "Accounts", "Leases", clock=clock)


@pytest.fixture
def seed(store):
    return Seeder(store)


@pytest.fixture
def settings():
    return Settings(
        reset_queue_url="https://sqs.us-east-1.amazonaws.com/123456789012/account-reset",
        lease_locked_topic_arn="arn:aws:sns:us-east-1:123456789012:lease-locked",
        lease_unlocked_topic_arn="arn:aws:sns:us-east-1:123456789012:lease-unlocked",
        lease_added_topic_arn="arn:aws:sns:us-east-1:123456789012:lease-added",
        lease_removed_topic_arn="arn:aws:sns:us-east-1:123456789012:lease-removed",
        account_created_topic_arn="arn:aws:sns:us-east-1:123456789012:account-created",
        update_lease_status_function_name="update-lease-status",
    )


@pytest.fixture
def sns():
    client = MagicMock()
    client.publish.return_value = {"MessageId": "msg-1"}
    return client


@pytest.fixture
def sqs():
    client = MagicMock()
    client.send_message.return_value = {"MessageId": "sqs-1"}
    return client


@pytest.fixture
def notifier(sns):
    return Notifier(sns)


@pytest.fixture
def reset_queue(sqs, settings):
    return ResetQueue(sqs, settings.reset_queue_url)


@pytest.fixture
def pool(store, notifier, reset_queue, settings):
    return AccountPool(store, notifier, reset_queue, settings.account_created_topic_arn)


@pytest.fixture
def provisioner(store, pool, notifier, reset_queue, settings):
    return LeaseProvisioner(store, pool, notifier, reset_queue, settings)
