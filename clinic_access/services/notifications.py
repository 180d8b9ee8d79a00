"""Security alert publishing (suspicious activity, emergency access)."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from clinic_access.core.config import get_settings

LOGGER = logging.getLogger("clinic_access.notifications.alerts")


class AlertPublisher(Protocol):
    """Publishes alerts consumed by the compliance team's notification channel."""

    def publish(self, *, alert_type: str, severity: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass
class NullAlertPublisher(AlertPublisher):
    """No-op publisher used when alerting is not configured; keeps alerts for inspection."""

    published: List[Dict[str, Any]] = field(default_factory=list)

    def publish(self, *, alert_type: str, severity: str, payload: Dict[str, Any]) -> None:  # noqa: D401
        self.published.append({"alert_type": alert_type, "severity": severity, **payload})
        LOGGER.debug("alert_skipped", extra={"alert_type": alert_type, "severity": severity})


class SnsAlertPublisher(AlertPublisher):
    """Publishes alerts to an SNS topic."""

    def __init__(self, *, topic_arn: str, region: str, source: str) -> None:
        self._topic_arn = topic_arn
        self._source = source
        self._client = boto3.client("sns", region_name=region)

    def publish(self, *, alert_type: str, severity: str, payload: Dict[str, Any]) -> None:
        message = {
            "alert_id": str(uuid4()),
            "source": self._source,
            "alert_type": alert_type,
            "severity": severity,
            **payload,
        }
        try:
            self._client.publish(
                TopicArn=self._topic_arn,
                Message=json.dumps(message, default=str),
                MessageAttributes={
                    "alert_type": {"DataType": "String", "StringValue": alert_type},
                    "severity": {"DataType": "String", "StringValue": severity},
                },
            )
            LOGGER.info(
                "alert_published",
                extra={"topic_arn": self._topic_arn, "alert_type": alert_type, "severity": severity},
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - rely on logging
            LOGGER.exception("alert_publish_failure", extra={"alert_type": alert_type})
            raise exc


_publisher: Optional[AlertPublisher] = None


def get_alert_publisher() -> AlertPublisher:
    """Return cached alert publisher instance."""

    global _publisher
    if _publisher is not None:
        return _publisher

    settings = get_settings()
    if settings.alert_topic_arn:
        region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1"
        _publisher = SnsAlertPublisher(
            topic_arn=settings.alert_topic_arn,
            region=region,
            source=settings.service_name,
        )
    else:
        _publisher = NullAlertPublisher()
    return _publisher


def set_alert_publisher(publisher: Optional[AlertPublisher]) -> None:
    global _publisher
    _publisher = publisher
