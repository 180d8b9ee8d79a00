from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Sequence

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clinic_access.audit.archive import ArchiveError, LocalFileArchiver, archiver_for
from clinic_access.core.config import get_settings
from clinic_access.core.database import session_scope
from clinic_access.core.errors import NotFoundError, ValidationError
from clinic_access.models.audit_log import AuditLog
from clinic_access.models.retention_policy import AuditRetentionPolicy
from clinic_access.schemas.audit import AuditEntry
from clinic_access.schemas.retention import RetentionPolicyUpsert
from clinic_access.services.audit import AuditService
from clinic_access.services.retention import RetentionService

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _record(session: Session, key: str, category: str, age_days: int) -> None:
    AuditService(session).record_event(
        AuditEntry(
            idempotency_key=key,
            event_type="ACCESS_GRANTED",
            event_category=category,
            action="VIEW",
            resource_type="MEDICAL_RECORD" if category == "PHI_ACCESS" else "APPOINTMENT",
            user_id="user-1",
            is_phi_access=category == "PHI_ACCESS",
            correlation_id=key,
            timestamp=NOW - timedelta(days=age_days),
        )
    )


def _count(session: Session, category: str) -> int:
    return session.scalar(select(func.count()).select_from(AuditLog).where(AuditLog.event_category == category))


def test_phi_retention_is_clamped_to_floor() -> None:
    settings = get_settings()
    with session_scope() as session:
        service = RetentionService(session, settings)
        phi = service.upsert_policy(
            "phi_access", RetentionPolicyUpsert(retention_days=30, archive_before_delete=False), actor_id="admin-1"
        )
        emergency = service.upsert_policy(
            "EMERGENCY", RetentionPolicyUpsert(retention_days=settings.phi_retention_floor_days + 5, archive_before_delete=False)
        )
        other = service.upsert_policy(
            "AUTHORIZATION", RetentionPolicyUpsert(retention_days=30, archive_before_delete=False)
        )

        assert phi.event_category == "PHI_ACCESS"
        assert phi.retention_days == settings.phi_retention_floor_days
        assert emergency.retention_days == settings.phi_retention_floor_days + 5
        assert other.retention_days == 30
        assert service.effective_retention_days("PHI_ACCESS", 1) == settings.phi_retention_floor_days


def test_archive_location_required_when_archiving() -> None:
    with session_scope() as session:
        with pytest.raises(ValidationError):
            RetentionService(session, get_settings()).upsert_policy(
                "AUTHORIZATION", RetentionPolicyUpsert(retention_days=30)
            )


def test_default_policies_cover_every_category() -> None:
    settings = get_settings()
    with session_scope() as session:
        service = RetentionService(session, settings)
        service.ensure_default_policies()
        service.ensure_default_policies()

        policies = {policy.event_category: policy.retention_days for policy in service.list_policies()}

    assert set(policies) == {"AUTHORIZATION", "PHI_ACCESS", "EMERGENCY", "ADMINISTRATION", "SECURITY"}
    assert all(days >= settings.default_retention_days for days in policies.values())


def test_run_archives_then_deletes_expired_entries(tmp_path: Path) -> None:
    archive_dir = tmp_path / "archive"
    with session_scope() as session:
        service = RetentionService(session, get_settings())
        service.ensure_default_policies()
        service.upsert_policy(
            "AUTHORIZATION", RetentionPolicyUpsert(retention_days=30, archive_location=f"file://{archive_dir}")
        )
        service.upsert_policy("PHI_ACCESS", RetentionPolicyUpsert(retention_days=30, archive_before_delete=False))
        for index in range(3):
            _record(session, f"old-{index}", "AUTHORIZATION", age_days=100)
        _record(session, "recent", "AUTHORIZATION", age_days=5)
        _record(session, "old-phi", "PHI_ACCESS", age_days=100)

        result = service.run(NOW)

        by_category = {item.event_category: item for item in result.categories}
        assert by_category["AUTHORIZATION"].deleted == 3
        assert by_category["AUTHORIZATION"].archived == 3
        assert by_category["PHI_ACCESS"].deleted == 0
        assert by_category["PHI_ACCESS"].effective_retention_days == get_settings().phi_retention_floor_days
        assert result.deleted == 3
        assert _count(session, "AUTHORIZATION") == 1
        assert _count(session, "PHI_ACCESS") == 1
        purge = session.scalar(select(AuditLog).where(AuditLog.event_type == "RETENTION_PURGE"))
        assert purge is not None
        assert purge.details["deleted"] == 3

    files = list(archive_dir.glob("*.jsonl"))
    assert len(files) == 1
    lines = [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]
    assert sorted(line["idempotency_key"] for line in lines) == ["old-0", "old-1", "old-2"]
    assert all(len(line["integrity_hash"]) == 64 for line in lines)


def test_archive_failure_keeps_rows() -> None:
    class BrokenArchiver:
        def archive(self, *, category: str, rows: Sequence[AuditLog]) -> str:
            raise ArchiveError("bucket unavailable")

    with session_scope() as session:
        service = RetentionService(session, get_settings(), archiver_factory=lambda location: BrokenArchiver())
        service.upsert_policy("AUTHORIZATION", RetentionPolicyUpsert(retention_days=30, archive_location="s3://b/p"))
        _record(session, "old-0", "AUTHORIZATION", age_days=100)

        result = service.run(NOW)

        assert result.categories[0].deleted == 0
        assert result.categories[0].error == "bucket unavailable"
        assert _count(session, "AUTHORIZATION") == 1


def test_inactive_policy_is_skipped() -> None:
    with session_scope() as session:
        service = RetentionService(session, get_settings())
        service.upsert_policy(
            "AUTHORIZATION", RetentionPolicyUpsert(retention_days=1, archive_before_delete=False, is_active=False)
        )
        _record(session, "old-0", "AUTHORIZATION", age_days=100)

        assert service.run(NOW).categories == []
        assert _count(session, "AUTHORIZATION") == 1


def test_delete_unknown_policy_is_not_found() -> None:
    with session_scope() as session:
        with pytest.raises(NotFoundError):
            RetentionService(session, get_settings()).delete_policy("SECURITY")


def test_archiver_for_picks_sink_by_scheme(tmp_path: Path) -> None:
    assert isinstance(archiver_for(str(tmp_path)), LocalFileArchiver)
    assert isinstance(archiver_for(f"file://{tmp_path}"), LocalFileArchiver)
    with pytest.raises(ArchiveError):
        archiver_for("ftp://archive.example.com/audit")


def test_unsupported_archive_location_is_rejected_on_upsert() -> None:
    with session_scope() as session:
        service = RetentionService(session, get_settings())
        with pytest.raises(ValidationError):
            service.upsert_policy(
                "ADMINISTRATION", RetentionPolicyUpsert(retention_days=30, archive_location="ftp://archive/audit")
            )
        with pytest.raises(ValidationError):
            service.upsert_policy("ADMINISTRATION", RetentionPolicyUpsert(retention_days=30, archive_location="s3:///audit"))


def test_unusable_stored_archive_location_only_skips_its_category() -> None:
    with session_scope() as session:
        service = RetentionService(session, get_settings())
        session.add(
            AuditRetentionPolicy(
                event_category="ADMINISTRATION",
                retention_days=30,
                archive_before_delete=True,
                archive_location="ftp://archive/audit",
                is_active=True,
            )
        )
        service.upsert_policy("AUTHORIZATION", RetentionPolicyUpsert(retention_days=30, archive_before_delete=False))
        _record(session, "old-admin", "ADMINISTRATION", age_days=100)
        _record(session, "old-auth", "AUTHORIZATION", age_days=100)

        result = service.run(NOW)

        by_category = {item.event_category: item for item in result.categories}
        assert by_category["ADMINISTRATION"].deleted == 0
        assert "ftp://archive/audit" in by_category["ADMINISTRATION"].error
        assert by_category["AUTHORIZATION"].deleted == 1
        assert _count(session, "AUTHORIZATION") == 0
