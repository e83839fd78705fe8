"""test_state_store.py — StateStore against the in-memory DynamoDB double.

Run from backend/lambda:
    python3 -m pytest shared_layer/test_state_store.py -v
"""

from __future__ import annotations

import pytest

from conftest import FakeDynamoDB, Seeder, client_error
from leasepool_shared.errors import ConditionFailure, InvariantViolation, NotFound, StorageFault
from leasepool_shared.models import AccountStatus, LeaseStatus, LeaseStatusReason
from leasepool_shared.state_store import StateStore


def test_transition_account_status_updates_status_and_timestamp(store, seed, clock):
    seed.account("111111111111", AccountStatus.READY)
    clock.advance(60)

    account = store.transition_account_status("111111111111", AccountStatus.READY, AccountStatus.LEASED)

    assert account.status == AccountStatus.LEASED
    assert account.last_modified_on == clock.now
    assert store.get_account("111111111111").status == AccountStatus.LEASED


def test_stale_prev_status_raises_and_leaves_record_unchanged(store, seed, ddb, clock):
    seed.account("111111111111", AccountStatus.LEASED)
    before = ddb.raw_item("Accounts", {"Id": {"S": "111111111111"}})
    clock.advance(60)

    with pytest.raises(ConditionFailure):
        store.transition_account_status("111111111111", AccountStatus.READY, AccountStatus.LEASED)

    assert ddb.raw_item("Accounts", {"Id": {"S": "111111111111"}}) == before


def test_transition_of_missing_account_is_condition_failure(store, ddb):
    with pytest.raises(ConditionFailure):
        store.transition_account_status("999999999999", AccountStatus.READY, AccountStatus.LEASED)
    assert ddb.items("Accounts") == []


def test_transition_lease_status_sets_reason_and_status_modified(store, seed, clock):
    seed.lease("111111111111", "alice", LeaseStatus.ACTIVE)
    clock.advance(30)

    lease = store.transition_lease_status(
        "111111111111", "alice", LeaseStatus.ACTIVE, LeaseStatus.INACTIVE, LeaseStatusReason.EXPIRED
    )

    assert lease.status == LeaseStatus.INACTIVE
    assert lease.status_reason == LeaseStatusReason.EXPIRED
    assert lease.status_modified_on == clock.now
    assert lease.last_modified_on == clock.now
    assert lease.created_on == clock.now - 30


def test_stale_lease_transition_raises_condition_failure(store, seed, ddb):
    seed.lease("111111111111", "alice", LeaseStatus.INACTIVE)
    key = {"AccountId": {"S": "111111111111"}, "PrincipalId": {"S": "alice"}}
    before = ddb.raw_item("Leases", key)

    with pytest.raises(ConditionFailure):
        store.transition_lease_status(
            "111111111111", "alice", LeaseStatus.ACTIVE, LeaseStatus.INACTIVE, LeaseStatusReason.DESTROYED
        )
    assert ddb.raw_item("Leases", key) == before


def test_put_account_never_overwrites_existing_record(store, seed):
    seed.account("111111111111", AccountStatus.LEASED)
    with pytest.raises(ConditionFailure):
        seed.account("111111111111", AccountStatus.READY)
    assert store.get_account("111111111111").status == AccountStatus.LEASED


def test_put_lease_never_overwrites_existing_pair(store, seed):
    seed.lease("111111111111", "alice", LeaseStatus.ACTIVE)
    with pytest.raises(ConditionFailure):
        seed.lease("111111111111", "alice", LeaseStatus.INACTIVE, lease_id="other")
    assert store.get_lease("111111111111", "alice").status == LeaseStatus.ACTIVE


def test_other_client_errors_become_storage_fault(store, seed, ddb):
    seed.account("111111111111", AccountStatus.READY)
    ddb.fail_when("update_item", lambda kw: True, client_error("ProvisionedThroughputExceededException"))

    with pytest.raises(StorageFault):
        store.transition_account_status("111111111111", AccountStatus.READY, AccountStatus.LEASED)


def test_read_errors_become_storage_fault(store, ddb):
    ddb.fail_when("query", lambda kw: True, client_error("InternalServerError", "Query"))
    with pytest.raises(StorageFault):
        store.find_accounts_by_status(AccountStatus.READY)


def test_queries_follow_last_evaluated_key(clock):
    ddb = FakeDynamoDB({"Accounts": ("Id", None), "Leases": ("AccountId", "PrincipalId")}, page_size=2)
    store = StateStore(ddb, "Accounts", "Leases", clock=clock)
    seeder = Seeder(store)
    for i in range(5):
        seeder.account(f"00000000000{i}", AccountStatus.NOT_READY)
    seeder.account("111111111111", AccountStatus.READY)

    accounts = store.find_accounts_by_status(AccountStatus.NOT_READY)

    assert sorted(a.id for a in accounts) == [f"00000000000{i}" for i in range(5)]
    assert len([c for c in ddb.calls if c[0] == "query"]) == 3


def test_get_ready_account_returns_none_when_pool_empty(store, seed):
    seed.account("111111111111", AccountStatus.LEASED)
    assert store.get_ready_account() is None


def test_get_ready_account_uses_status_index(store, seed, ddb):
    seed.account("111111111111", AccountStatus.READY)
    account = store.get_ready_account()
    assert account.id == "111111111111"
    method, kwargs = ddb.calls[-1]
    assert method == "query"
    assert kwargs["IndexName"] == "AccountStatus"


def test_lease_queries_by_principal_account_and_status(store, seed):
    seed.lease("111111111111", "alice", LeaseStatus.INACTIVE)
    seed.lease("222222222222", "alice", LeaseStatus.ACTIVE)
    seed.lease("222222222222", "bob", LeaseStatus.INACTIVE)

    assert {l.account_id for l in store.find_leases_by_principal("alice")} == {"111111111111", "222222222222"}
    assert {l.principal_id for l in store.find_leases_by_account("222222222222")} == {"alice", "bob"}
    assert [l.principal_id for l in store.find_leases_by_status(LeaseStatus.ACTIVE)] == ["alice"]


def test_get_lease_by_id(store, seed):
    seed.lease("111111111111", "alice", lease_id="lease-1")
    assert store.get_lease_by_id("lease-1").principal_id == "alice"
    assert store.get_lease_by_id("missing") is None
    with pytest.raises(NotFound):
        store.require_lease_by_id("missing")


def test_duplicate_lease_ids_are_an_invariant_violation(store, seed):
    seed.lease("111111111111", "alice", lease_id="dup")
    seed.lease("222222222222", "bob", lease_id="dup")
    with pytest.raises(InvariantViolation):
        store.get_lease_by_id("dup")


def test_require_account_raises_not_found(store):
    with pytest.raises(NotFound):
        store.require_account("123456789012")


def test_lease_round_trips_budget_fields(store, seed):
    seed.lease(
        "111111111111",
        "alice",
        budget_amount=250.5,
        budget_currency="EUR",
        budget_notification_emails=["alice@example.com"],
        metadata={"team": "data"},
    )
    lease = store.get_lease("111111111111", "alice")
    assert lease.budget_amount == 250.5
    assert lease.budget_currency == "EUR"
    assert lease.budget_notification_emails == ["alice@example.com"]
    assert lease.metadata == {"team": "data"}
