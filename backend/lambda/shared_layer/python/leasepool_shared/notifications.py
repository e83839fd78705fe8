"""leasepool_shared.notifications — SNS topic publishing and the reset queue.

Topic messages are sent with ``MessageStructure="json"``; the body is a JSON
document carrying the same payload under ``default`` and ``Body`` so both
plain subscribers and protocol-specific ones (SQS, Lambda) receive it.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from .errors import STORAGE_ERRORS, ConfigurationError, StorageFault
from .models import Lease

logger = logging.getLogger(__name__)


def lease_message(lease: Lease) -> Dict[str, Any]:
    """Serializable lease snapshot published to topics and fan-out targets."""
    return lease.to_item()


class Notifier:
    def __init__(self, sns):
        self._sns = sns

    def publish(self, topic_arn: str, payload: Any) -> str:
        if not topic_arn:
            raise ConfigurationError("Topic ARN is not configured")
        body = json.dumps(payload, default=str)
        message = json.dumps({"default": body, "Body": body})
        try:
            resp = self._sns.publish(
                TopicArn=topic_arn,
                Message=message,
                MessageStructure="json",
            )
        except STORAGE_ERRORS as exc:
            raise StorageFault(f"Failed publishing to {topic_arn}: {exc}") from exc
        message_id = resp.get("MessageId", "")
        logger.info("[INFO] Published message %s to %s", message_id, topic_arn)
        return message_id

    def publish_lease(self, topic_arn: str, lease: Lease) -> str:
        return self.publish(topic_arn, lease_message(lease))


class ResetQueue:
    """The reset queue; each message body is an AccountId."""

    def __init__(self, sqs, queue_url: str):
        self._sqs = sqs
        self.queue_url = queue_url

    def enqueue(self, account_id: str) -> None:
        if not self.queue_url:
            raise ConfigurationError("Reset queue URL is not configured")
        try:
            self._sqs.send_message(QueueUrl=self.queue_url, MessageBody=account_id)
        except STORAGE_ERRORS as exc:
            raise StorageFault(f"Failed adding account {account_id} to reset queue: {exc}") from exc
        logger.info("[INFO] Added account %s to reset queue", account_id)
