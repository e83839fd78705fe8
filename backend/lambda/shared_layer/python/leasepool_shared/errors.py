"""leasepool_shared.errors — Exception types shared by the lease pool engine."""

from __future__ import annotations

from typing import List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"


class LeasePoolError(Exception):
    """Base class for every error raised by the engine."""


class ConditionFailure(LeasePoolError):
    """Compare-and-swap precondition not met (lost race, stale view, missing record)."""


class NotFound(LeasePoolError):
    """No record exists for the given key."""


class ValidationError(LeasePoolError):
    """Malformed or missing input; raised before any mutation."""


class PrincipalBusy(LeasePoolError):
    """The principal already holds a lease that is not Inactive."""


class NoAccountsAvailable(LeasePoolError):
    """No Ready account is left in the pool."""


class InvariantViolation(LeasePoolError):
    """Stored state contradicts a protocol invariant (coordination bug)."""


class StorageFault(LeasePoolError):
    """Any persistence failure other than a failed condition."""


class ChangeFeedDecodeError(LeasePoolError):
    """A change-feed image is missing a required attribute."""


class ConfigurationError(LeasePoolError, ValueError):
    """A required setting (topic, queue, function name) is missing or malformed."""


class AggregateError(LeasePoolError):
    """Several independent per-item failures, reported together."""

    def __init__(self, message: str, errors: Sequence[BaseException]):
        self.message = message
        self.errors: List[BaseException] = list(errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.message}: " + "; ".join(str(err) for err in self.errors)


class CompensationFailure(LeasePoolError):
    """A rollback step failed after a forward step had already failed."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException],
        compensation_errors: Sequence[BaseException],
    ):
        self.message = message
        self.cause = cause
        self.compensation_errors: List[BaseException] = list(compensation_errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        detail = "; ".join(str(err) for err in self.compensation_errors)
        return f"{self.message} (cause: {self.cause}; compensation: {detail})"


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def translate_client_error(exc: Exception, condition_message: str, fault_message: str) -> LeasePoolError:
    """Map a botocore failure onto ConditionFailure or StorageFault."""
    if isinstance(exc, ClientError) and _error_code(exc) == CONDITIONAL_CHECK_FAILED:
        return ConditionFailure(condition_message)
    return StorageFault(f"{fault_message}: {exc}")


STORAGE_ERRORS = (ClientError, BotoCoreError)
