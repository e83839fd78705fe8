"""leasepool_shared.aws_clients — Lazily created AWS service clients.

``AwsClients`` creates each boto3 client on first use and keeps it for the
rest of the container's life, so cold starts only pay for the clients a
handler actually touches. One instance is built per handler module and passed
into the components that need it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from .config import Settings

# Data-plane calls get more retry headroom than fire-and-forget publishes.
_MAX_ATTEMPTS: Dict[str, int] = {
    "dynamodb": 5,
    "sqs": 3,
    "sns": 3,
    "lambda": 3,
}


class AwsClients:
    def __init__(self, settings: Settings, session: Optional[boto3.session.Session] = None):
        self._settings = settings
        self._session = session
        self._clients: Dict[str, Any] = {}

    def _client(self, service: str):
        client = self._clients.get(service)
        if client is None:
            factory = self._session.client if self._session is not None else boto3.client
            client = factory(
                service,
                region_name=self._settings.region,
                config=Config(retries={"max_attempts": _MAX_ATTEMPTS.get(service, 3), "mode": "standard"}),
            )
            self._clients[service] = client
        return client

    @property
    def dynamodb(self):
        return self._client("dynamodb")

    @property
    def sqs(self):
        return self._client("sqs")

    @property
    def sns(self):
        return self._client("sns")

    @property
    def lambda_(self):
        return self._client("lambda")
