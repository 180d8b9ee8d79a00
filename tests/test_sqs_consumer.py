from __future__ import annotations

import json
from typing import Any, Dict, List

from sqlalchemy import select

from clinic_access.audit.pipeline import DatabaseAuditWriter
from clinic_access.audit.sqs_consumer import SQSAuditConsumer, audit_message_handler, unwrap_sns_envelope
from clinic_access.core.database import session_scope
from clinic_access.models.audit_log import AuditLog


class FakeSQS:
    def __init__(self, messages: List[Dict[str, Any]]) -> None:
        self.messages = messages
        self.deleted: List[str] = []
        self.receive_calls: List[Dict[str, Any]] = []

    def receive_message(self, **kwargs: Any) -> Dict[str, Any]:
        self.receive_calls.append(kwargs)
        return {"Messages": self.messages}

    def delete_message(self, *, QueueUrl: str, ReceiptHandle: str) -> None:  # noqa: N803
        self.deleted.append(ReceiptHandle)


def _payload(key: str) -> Dict[str, Any]:
    return {
        "idempotency_key": key,
        "event_type": "EXTERNAL",
        "event_category": "PHI_ACCESS",
        "action": "EXPORT",
        "resource_type": "LAB_RESULT",
        "resource_id": "lab-7",
        "user_id": "lab-integration",
        "patient_id": "p-7",
        "is_phi_access": True,
        "correlation_id": key,
        "source": "lab-gateway",
        "timestamp": "2026-10-19T08:30:00+00:00",
    }


def test_unwrap_sns_envelope() -> None:
    inner = _payload("k1")

    assert unwrap_sns_envelope(json.dumps({"Type": "Notification", "Message": json.dumps(inner)})) == inner
    assert unwrap_sns_envelope(json.dumps(inner)) == inner


def test_poll_once_persists_and_deletes_valid_messages() -> None:
    sqs = FakeSQS(
        [
            {"ReceiptHandle": "r1", "Body": json.dumps(_payload("lab:1"))},
            {"ReceiptHandle": "r2", "Body": json.dumps({"Message": json.dumps(_payload("lab:2"))})},
            {"ReceiptHandle": "r3", "Body": json.dumps(_payload("lab:1"))},
            {"ReceiptHandle": "bad", "Body": json.dumps({"event_type": "EXTERNAL"})},
            {"ReceiptHandle": "garbage", "Body": "not json"},
        ]
    )
    consumer = SQSAuditConsumer(
        queue_url="https://sqs.example/audit",
        handler=audit_message_handler(DatabaseAuditWriter(source="test")),
        sqs_client=sqs,
        wait_time_seconds=1,
        visibility_timeout=30,
    )

    handled = consumer.poll_once()

    assert handled == 3
    assert sqs.deleted == ["r1", "r2", "r3"]
    assert sqs.receive_calls[0]["VisibilityTimeout"] == 30
    with session_scope() as session:
        rows = list(session.scalars(select(AuditLog).order_by(AuditLog.id)))
    assert [row.idempotency_key for row in rows] == ["lab:1", "lab:2"]
    assert rows[0].source == "lab-gateway"
    assert rows[0].is_phi_access
