"""Long-polling SQS intake for audit events produced by other clinic services."""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from clinic_access.audit.pipeline import AuditWriter, DatabaseAuditWriter
from clinic_access.core.config import get_settings
from clinic_access.schemas.audit import AuditEntry

LOGGER = logging.getLogger("clinic_access.audit.sqs_consumer")


class MessageHandler(Protocol):
    def __call__(self, message: Dict[str, Any]) -> None:
        ...


def unwrap_sns_envelope(message_body: str) -> Dict[str, Any]:
    """Extract the inner payload when delivered via SNS -> SQS."""

    payload = json.loads(message_body)
    if isinstance(payload, dict) and "Message" in payload:
        inner = payload["Message"]
        if isinstance(inner, str):
            return json.loads(inner)
        if isinstance(inner, dict):
            return inner
    return payload


def audit_message_handler(writer: AuditWriter) -> Callable[[Dict[str, Any]], None]:
    """Validate an external payload and persist it through the idempotent writer."""

    def _handle(payload: Dict[str, Any]) -> None:
        entry = AuditEntry.model_validate(payload)
        audit_log_id = writer.write(entry)
        LOGGER.info(
            "audit_event_ingested",
            extra={
                "audit_log_id": audit_log_id,
                "idempotency_key": entry.idempotency_key,
                "source": entry.source,
            },
        )

    return _handle


class SQSAuditConsumer:
    """Feeds queue messages to a handler; a message is deleted only after it was handled."""

    def __init__(
        self,
        *,
        queue_url: str,
        handler: MessageHandler,
        region_name: Optional[str] = None,
        wait_time_seconds: int = 20,
        visibility_timeout: Optional[int] = None,
        max_messages: int = 5,
        sqs_client: Any = None,
    ) -> None:
        self._queue_url = queue_url
        self._handler = handler
        self._receive_kwargs: Dict[str, Any] = {
            "QueueUrl": queue_url,
            "MaxNumberOfMessages": max_messages,
            "WaitTimeSeconds": wait_time_seconds,
            "MessageAttributeNames": ["All"],
        }
        if visibility_timeout is not None:
            self._receive_kwargs["VisibilityTimeout"] = visibility_timeout
        self._sqs = sqs_client or boto3.client("sqs", region_name=region_name)

    def run_forever(self) -> None:
        LOGGER.info("audit_sqs_consumer_started", extra={"queue_url": self._queue_url})
        while True:
            try:
                self.poll_once()
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover - resiliency
                LOGGER.exception("audit_sqs_receive_failed", extra={"error": str(exc)})
                time.sleep(5)

    def poll_once(self) -> int:
        """Receive one batch; returns the number of messages handled and deleted."""

        response = self._sqs.receive_message(**self._receive_kwargs)
        handled = 0
        for message in response.get("Messages", []):
            receipt_handle = message["ReceiptHandle"]
            try:
                payload = unwrap_sns_envelope(message.get("Body", ""))
                self._handler(payload)
            except Exception as exc:  # noqa: BLE001 - left on the queue for redelivery
                LOGGER.exception("audit_sqs_message_failed", extra={"error": str(exc)})
                continue

            try:
                self._sqs.delete_message(QueueUrl=self._queue_url, ReceiptHandle=receipt_handle)
                handled += 1
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover - resiliency
                LOGGER.exception(
                    "audit_sqs_delete_failed",
                    extra={"error": str(exc), "receipt_handle": receipt_handle},
                )
        return handled


def build_audit_consumer_from_env() -> SQSAuditConsumer:
    """Construct the consumer from settings plus the standard AWS/queue tuning variables."""

    settings = get_settings()
    if not settings.audit_sqs_url:
        raise RuntimeError("CLINIC_ACCESS_AUDIT_SQS_URL is not configured")
    region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
    max_messages = int(os.getenv("CLINIC_ACCESS_AUDIT_SQS_MAX_MESSAGES", "5"))
    wait_time = int(os.getenv("CLINIC_ACCESS_AUDIT_SQS_WAIT_TIME", "20"))
    visibility_timeout = os.getenv("CLINIC_ACCESS_AUDIT_SQS_VISIBILITY_TIMEOUT")
    visibility = int(visibility_timeout) if visibility_timeout else None

    return SQSAuditConsumer(
        queue_url=settings.audit_sqs_url,
        handler=audit_message_handler(DatabaseAuditWriter(source=settings.service_name)),
        region_name=region,
        max_messages=max_messages,
        wait_time_seconds=wait_time,
        visibility_timeout=visibility,
    )
