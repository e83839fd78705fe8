"""leasepool_shared.config — Environment-driven settings for lease pool Lambdas.

Each handler builds one ``Settings`` per cold start and hands it (together with
an ``AwsClients``) to the components it wires up. Components never read the
environment themselves.

Environment variables:
    ACCOUNT_DB                      DynamoDB account table (default: Accounts)
    LEASE_DB                        DynamoDB lease table (default: Leases)
    AWS_CURRENT_REGION              Region for all clients (default: us-east-1)
    RESET_SQS_URL                   Reset queue URL
    LEASE_LOCKED_TOPIC_ARN          SNS topic for Active -> locked transitions
    LEASE_UNLOCKED_TOPIC_ARN        SNS topic for locked -> Active transitions
    LEASE_ADDED_TOPIC_ARN           SNS topic for newly provisioned leases
    LEASE_REMOVED_TOPIC_ARN         SNS topic for decommissioned leases
    ACCOUNT_CREATED_TOPIC_ARN       SNS topic for newly registered accounts
    UPDATE_LEASE_STATUS_FUNCTION_NAME  Budget-check fan-out target Lambda
    DEFAULT_LEASE_LENGTH_IN_DAYS    Default lease length (default: 7)
    MAX_LEASE_BUDGET_AMOUNT         Max budget per lease (default: 1000)
    MAX_LEASE_PERIOD                Max lease length in seconds (default: 704800)
    LEASE_STATUS_MODEL              "hold" (default) or "binary"
    CONSISTENT_READ                 "true" to use consistent reads where possible
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError

LEASE_STATUS_MODELS = ("hold", "binary")


def _env_bool(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in {"1", "true", "yes"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    account_table: str = "Accounts"
    lease_table: str = "Leases"
    region: str = "us-east-1"
    reset_queue_url: str = ""
    lease_locked_topic_arn: str = ""
    lease_unlocked_topic_arn: str = ""
    lease_added_topic_arn: str = ""
    lease_removed_topic_arn: str = ""
    account_created_topic_arn: str = ""
    update_lease_status_function_name: str = ""
    default_lease_length_in_days: int = 7
    max_lease_budget_amount: float = 1000.0
    max_lease_period: int = 704800
    lease_status_model: str = "hold"
    consistent_read: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        model = (env.get("LEASE_STATUS_MODEL") or "hold").strip().lower()
        if model not in LEASE_STATUS_MODELS:
            raise ConfigurationError(
                f"LEASE_STATUS_MODEL must be one of {LEASE_STATUS_MODELS}, got {model!r}"
            )
        return cls(
            account_table=env.get("ACCOUNT_DB", "Accounts"),
            lease_table=env.get("LEASE_DB", "Leases"),
            region=env.get("AWS_CURRENT_REGION", "us-east-1"),
            reset_queue_url=env.get("RESET_SQS_URL", ""),
            lease_locked_topic_arn=env.get("LEASE_LOCKED_TOPIC_ARN", ""),
            lease_unlocked_topic_arn=env.get("LEASE_UNLOCKED_TOPIC_ARN", ""),
            lease_added_topic_arn=env.get("LEASE_ADDED_TOPIC_ARN", ""),
            lease_removed_topic_arn=env.get("LEASE_REMOVED_TOPIC_ARN", ""),
            account_created_topic_arn=env.get("ACCOUNT_CREATED_TOPIC_ARN", ""),
            update_lease_status_function_name=env.get("UPDATE_LEASE_STATUS_FUNCTION_NAME", ""),
            default_lease_length_in_days=_env_int(env, "DEFAULT_LEASE_LENGTH_IN_DAYS", 7),
            max_lease_budget_amount=_env_float(env, "MAX_LEASE_BUDGET_AMOUNT", 1000.0),
            max_lease_period=_env_int(env, "MAX_LEASE_PERIOD", 704800),
            lease_status_model=model,
            consistent_read=_env_bool(env.get("CONSISTENT_READ")),
        )

    def require(self, field_name: str) -> str:
        """Return a string setting, raising if it was left empty."""
        value = getattr(self, field_name)
        if not value:
            raise ConfigurationError(f"Setting '{field_name}' is required but not configured")
        return value
