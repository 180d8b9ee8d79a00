"""Archive sinks used by the retention job before deleting audit entries."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Protocol, Sequence
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from clinic_access.models.audit_log import AuditLog

LOGGER = logging.getLogger("clinic_access.audit.archive")


class ArchiveError(Exception):
    """Raised when a batch could not be archived; the batch must not be deleted."""


def serialize_audit_row(row: AuditLog) -> Dict[str, Any]:
    timestamp = row.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return {
        "id": row.id,
        "idempotency_key": row.idempotency_key,
        "timestamp": timestamp.isoformat(),
        "event_type": row.event_type,
        "event_category": row.event_category,
        "action": row.action,
        "resource_type": row.resource_type,
        "resource_id": row.resource_id,
        "user_id": row.user_id,
        "patient_id": row.patient_id,
        "branch_id": row.branch_id,
        "is_phi_access": row.is_phi_access,
        "is_emergency_access": row.is_emergency_access,
        "emergency_justification": row.emergency_justification,
        "reason": row.reason,
        "is_success": row.is_success,
        "correlation_id": row.correlation_id,
        "duration_ms": row.duration_ms,
        "source": row.source,
        "details": row.details,
        "integrity_hash": row.integrity_hash,
    }


def _batch_name(category: str, rows: Sequence[AuditLog]) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{category.lower()}-{rows[0].id}-{rows[-1].id}-{stamp}.jsonl"


def _as_jsonl(rows: Sequence[AuditLog]) -> str:
    lines: List[str] = [json.dumps(serialize_audit_row(row), sort_keys=True, default=str) for row in rows]
    return "\n".join(lines) + "\n"


class AuditArchiver(Protocol):
    def archive(self, *, category: str, rows: Sequence[AuditLog]) -> str:
        """Store ``rows`` and return the archive object's location."""
        ...


class LocalFileArchiver(AuditArchiver):
    """Writes JSON-lines batches under a local directory (``file://`` or plain path)."""

    def __init__(self, directory: str) -> None:
        self._directory = Path(directory)

    def archive(self, *, category: str, rows: Sequence[AuditLog]) -> str:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            target = self._directory / _batch_name(category, rows)
            target.write_text(_as_jsonl(rows), encoding="utf-8")
        except OSError as exc:
            raise ArchiveError(f"Could not archive to {self._directory}: {exc}") from exc
        LOGGER.info("audit_batch_archived", extra={"location": str(target), "rows": len(rows)})
        return str(target)


class S3Archiver(AuditArchiver):
    """Uploads JSON-lines batches to ``s3://bucket/prefix``."""

    def __init__(self, *, bucket: str, prefix: str, region: str | None = None) -> None:
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._client = boto3.client("s3", region_name=region)

    def archive(self, *, category: str, rows: Sequence[AuditLog]) -> str:
        key = "/".join(part for part in (self._prefix, _batch_name(category, rows)) if part)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=_as_jsonl(rows).encode("utf-8"),
                ContentType="application/x-ndjson",
                ServerSideEncryption="AES256",
            )
        except (BotoCoreError, ClientError) as exc:
            LOGGER.exception("audit_batch_archive_failed", extra={"bucket": self._bucket, "key": key})
            raise ArchiveError(f"Could not archive to s3://{self._bucket}/{key}") from exc
        location = f"s3://{self._bucket}/{key}"
        LOGGER.info("audit_batch_archived", extra={"location": location, "rows": len(rows)})
        return location


_SUPPORTED_SCHEMES = ("s3", "file", "")


def validate_archive_location(location: str) -> None:
    """Raise ``ArchiveError`` unless ``location`` names a sink ``archiver_for`` can build."""

    parsed = urlparse(location)
    if parsed.scheme not in _SUPPORTED_SCHEMES:
        raise ArchiveError(f"Unsupported archive location '{location}'")
    if parsed.scheme == "s3" and not parsed.netloc:
        raise ArchiveError(f"Archive location '{location}' has no bucket")


def archiver_for(location: str) -> AuditArchiver:
    """Pick the sink for ``location`` by its URL scheme."""

    validate_archive_location(location)
    parsed = urlparse(location)
    if parsed.scheme == "s3":
        region = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
        return S3Archiver(bucket=parsed.netloc, prefix=parsed.path, region=region)
    if parsed.scheme == "file":
        return LocalFileArchiver(parsed.path)
    return LocalFileArchiver(location)
