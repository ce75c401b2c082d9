"""SQS adapter wrapping the blocking boto3 client for asyncio callers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..config import QueueConfig
from ..core import QueueMessage

LOGGER = logging.getLogger(__name__)


class QueueTransportError(RuntimeError):
    """Raised when a queue request fails at the transport level."""


def create_sqs_client(config: QueueConfig) -> Any:
    """Build a boto3 SQS client for the configured region.

    Explicit credentials are used when both keys are configured; otherwise
    boto3 falls back to its default credential chain.
    """

    credentials: dict[str, str] = {}
    if config.access_key and config.secret_key:
        credentials = {
            "aws_access_key_id": config.access_key,
            "aws_secret_access_key": config.secret_key,
        }
    elif config.access_key or config.secret_key:
        LOGGER.warning(
            "Only one of the AWS access/secret keys is set; using the default credential chain"
        )

    return boto3.client(
        "sqs",
        region_name=config.region,
        config=BotoConfig(retries={"max_attempts": 1}),
        **credentials,
    )


class SqsTransport:
    """Queue transport backed by Amazon SQS."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: QueueConfig) -> "SqsTransport":
        return cls(create_sqs_client(config))

    async def receive_message(self, queue_url: str) -> Optional[QueueMessage]:
        response = await asyncio.to_thread(self._receive, queue_url)
        messages = response.get("Messages") or []
        if not messages:
            return None

        first = messages[0]
        receipt_handle = first.get("ReceiptHandle")
        if not receipt_handle:
            raise QueueTransportError("Received message without a receipt handle")

        return QueueMessage(
            body=first.get("Body") or "",
            receipt_handle=receipt_handle,
            message_id=first.get("MessageId"),
        )

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        await asyncio.to_thread(self._delete, queue_url, receipt_handle)

    def _receive(self, queue_url: str) -> dict[str, Any]:
        try:
            return self._client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=1,
                WaitTimeSeconds=0,
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueTransportError(f"ReceiveMessage failed: {exc}") from exc

    def _delete(self, queue_url: str, receipt_handle: str) -> None:
        try:
            self._client.delete_message(
                QueueUrl=queue_url, ReceiptHandle=receipt_handle
            )
        except (BotoCoreError, ClientError) as exc:
            raise QueueTransportError(f"DeleteMessage failed: {exc}") from exc
