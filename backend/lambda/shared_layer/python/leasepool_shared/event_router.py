"""leasepool_shared.event_router — Lease change feed -> locked/unlocked topics.

Consumes DynamoDB Streams records of the lease table, either delivered
directly (``aws:dynamodb``) or wrapped in SQS messages (EventBridge Pipe ->
SQS -> Lambda). Only ``MODIFY`` records whose ``LeaseStatus`` changed are
considered; the transition is classified and the new lease image is
published to the matching topic.

Status models:
    hold    Active -> hold state or Inactive      => locked
            hold state -> Active                  => unlocked
            anything else                         => suppressed
    binary  Active -> anything else               => locked
            any other change                      => unlocked

A record with no ``LeaseStatus`` in either image, an SQS body that is not a
stream record, or a record from an unknown source can never succeed, so it is
logged and dropped. A failed publish is reported back through
``batchItemFailures`` so only that record is redelivered.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ChangeFeedDecodeError
from .models import HOLD_STATUSES, LeaseStatus
from .notifications import Notifier
from .serialization import deserialize_item

logger = logging.getLogger(__name__)

LOCKED = "locked"
UNLOCKED = "unlocked"

_ACTIVE = LeaseStatus.ACTIVE.value
_INACTIVE = LeaseStatus.INACTIVE.value


def classify_transition(prev_status: str, next_status: str, model: str = "hold") -> Optional[str]:
    """Return LOCKED, UNLOCKED, or None when nothing should be published."""
    if prev_status == next_status:
        return None
    if model == "binary":
        if prev_status == _ACTIVE:
            return LOCKED
        return UNLOCKED
    if prev_status == _ACTIVE and (next_status in HOLD_STATUSES or next_status == _INACTIVE):
        return LOCKED
    if prev_status in HOLD_STATUSES and next_status == _ACTIVE:
        return UNLOCKED
    return None


def record_identifier(raw: Dict[str, Any]) -> str:
    """What the event source expects back in ``batchItemFailures``.

    The SQS message id for wrapped records; the stream sequence number (or
    the event id when that is missing) for direct ones.
    """
    if raw.get("eventSource") == "aws:sqs":
        return raw.get("messageId", "")
    ddb = raw.get("dynamodb") or {}
    return ddb.get("SequenceNumber") or raw.get("eventID", "")


def unwrap_record(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return the stream records carried by one invocation record.

    Raises ChangeFeedDecodeError for an unknown event source or an SQS body
    that does not hold stream records.
    """
    source = raw.get("eventSource")
    if source == "aws:dynamodb":
        return [raw]
    if source != "aws:sqs":
        raise ChangeFeedDecodeError(f"unrecognised event source {source!r}")
    try:
        body = json.loads(raw.get("body") or "{}")
    except (TypeError, ValueError) as exc:
        raise ChangeFeedDecodeError(f"SQS body is not JSON: {exc}") from exc
    if isinstance(body, dict) and "dynamodb" in body:
        return [body]
    if isinstance(body, list):
        records = [r for r in body if isinstance(r, dict) and "dynamodb" in r]
        if records:
            return records
    raise ChangeFeedDecodeError("SQS body carries no stream record")


def _image_status(image: Optional[Dict[str, Any]], side: str) -> str:
    attr = (image or {}).get("LeaseStatus") or {}
    status = attr.get("S")
    if not status:
        raise ChangeFeedDecodeError(f"{side} image has no LeaseStatus")
    return status


@dataclass
class RouterResult:
    processed: int = 0
    published: int = 0
    ignored: int = 0
    decode_errors: List[str] = field(default_factory=list)
    publish_errors: List[str] = field(default_factory=list)
    batch_item_failures: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.decode_errors and not self.publish_errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "processed": self.processed,
            "published": self.published,
            "ignored": self.ignored,
            "decode_errors": list(self.decode_errors),
            "publish_errors": list(self.publish_errors),
            "batchItemFailures": [{"itemIdentifier": i} for i in self.batch_item_failures],
        }


class ChangeEventRouter:
    def __init__(
        self,
        notifier: Notifier,
        locked_topic_arn: str,
        unlocked_topic_arn: str,
        model: str = "hold",
        store=None,
    ):
        self._notifier = notifier
        self._topics = {LOCKED: locked_topic_arn, UNLOCKED: unlocked_topic_arn}
        self.model = model
        self._store = store

    @classmethod
    def from_settings(cls, settings, notifier: Notifier, store=None) -> "ChangeEventRouter":
        return cls(
            notifier,
            settings.lease_locked_topic_arn,
            settings.lease_unlocked_topic_arn,
            model=settings.lease_status_model,
            store=store,
        )

    def route_record(self, record: Dict[str, Any]) -> Optional[str]:
        """Publish one stream record if it is a meaningful transition.

        Returns the topic kind published to, or None when the record was
        ignored. Raises ChangeFeedDecodeError for unusable images and lets
        publish errors propagate.
        """
        if record.get("eventName") != "MODIFY":
            return None
        ddb = record.get("dynamodb") or {}
        prev_status = _image_status(ddb.get("OldImage"), "OldImage")
        next_status = _image_status(ddb.get("NewImage"), "NewImage")

        kind = classify_transition(prev_status, next_status, self.model)
        if kind is None:
            return None

        lease = deserialize_item(ddb["NewImage"])
        self._log_account(lease.get("AccountId"))
        logger.info(
            "[INFO] Lease %s @ %s moved %s -> %s, publishing %s",
            lease.get("PrincipalId"),
            lease.get("AccountId"),
            prev_status,
            next_status,
            kind,
        )
        self._notifier.publish(self._topics[kind], lease)
        return kind

    def _log_account(self, account_id: Optional[str]) -> None:
        if self._store is None or not account_id:
            return
        try:
            account = self._store.get_account(account_id)
        except Exception as exc:
            logger.warning("[WARNING] Could not read account %s for diagnostics: %s", account_id, exc)
            return
        if account is not None:
            logger.info("[INFO] Account %s is %s", account.id, account.status.value)

    def handle(self, event: Dict[str, Any]) -> RouterResult:
        result = RouterResult()
        for raw in event.get("Records") or []:
            identifier = record_identifier(raw)
            try:
                records = unwrap_record(raw)
            except ChangeFeedDecodeError as exc:
                result.processed += 1
                logger.warning("[WARNING] Dropping unreadable record %s: %s", identifier, exc)
                result.decode_errors.append(f"{identifier}: {exc}")
                continue
            for record in records:
                result.processed += 1
                self._route_one(identifier, record, result)
        return result

    def _route_one(self, identifier: str, record: Dict[str, Any], result: RouterResult) -> None:
        try:
            kind = self.route_record(record)
        except ChangeFeedDecodeError as exc:
            logger.error("[ERROR] Dropping undecodable record %s: %s", identifier, exc)
            result.decode_errors.append(f"{identifier}: {exc}")
            return
        except Exception as exc:
            logger.error("[ERROR] Publish failed for record %s: %s", identifier, exc)
            result.publish_errors.append(f"{identifier}: {exc}")
            if not identifier:
                logger.warning("[WARNING] Record has no identifier; it cannot be redelivered")
            elif identifier not in result.batch_item_failures:
                result.batch_item_failures.append(identifier)
            return
        if kind is None:
            result.ignored += 1
        else:
            result.published += 1
