"""Audit retention policies and the purge job."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from clinic_access.audit.archive import ArchiveError, AuditArchiver, archiver_for, validate_archive_location
from clinic_access.core.config import AppSettings
from clinic_access.core.errors import NotFoundError, ValidationError
from clinic_access.models.audit_log import AuditLog
from clinic_access.models.retention_policy import AuditRetentionPolicy
from clinic_access.schemas.audit import AuditEventCategory, AuditEventType
from clinic_access.schemas.retention import (
    RetentionCategoryResult,
    RetentionPolicyUpsert,
    RetentionRunResult,
)
from clinic_access.services.audit import AuditService

ArchiverFactory = Callable[[str], AuditArchiver]


class RetentionService:
    """Manages per-category retention and purges expired audit entries."""

    def __init__(
        self,
        session: Session,
        settings: AppSettings,
        *,
        archiver_factory: ArchiverFactory = archiver_for,
    ) -> None:
        self._session = session
        self._settings = settings
        self._archiver_factory = archiver_factory
        self._logger = logging.getLogger("clinic_access.services.retention")

    def effective_retention_days(self, category: str, configured_days: int) -> int:
        """Configured days, raised to the regulatory floor for PHI categories."""

        if category.upper() in self._settings.phi_event_categories:
            floor = self._settings.phi_retention_floor_days
            if configured_days < floor:
                self._logger.warning(
                    "retention_floor_applied",
                    extra={"event_category": category, "configured_days": configured_days, "floor_days": floor},
                )
                return floor
        return configured_days

    def list_policies(self) -> List[AuditRetentionPolicy]:
        return list(self._session.scalars(select(AuditRetentionPolicy).order_by(AuditRetentionPolicy.event_category)))

    def get_policy(self, category: str) -> AuditRetentionPolicy:
        policy = self._session.scalar(
            select(AuditRetentionPolicy).where(AuditRetentionPolicy.event_category == category.upper())
        )
        if policy is None:
            raise NotFoundError(f"No retention policy for category '{category}'")
        return policy

    def upsert_policy(
        self,
        category: str,
        payload: RetentionPolicyUpsert,
        *,
        actor_id: Optional[str] = None,
    ) -> AuditRetentionPolicy:
        category = category.upper()
        if payload.archive_before_delete and not payload.archive_location:
            raise ValidationError("archive_location is required when archive_before_delete is set")
        if payload.archive_location:
            try:
                validate_archive_location(payload.archive_location)
            except ArchiveError as exc:
                raise ValidationError(str(exc)) from exc
        retention_days = self.effective_retention_days(category, payload.retention_days)

        policy = self._session.scalar(
            select(AuditRetentionPolicy).where(AuditRetentionPolicy.event_category == category)
        )
        if policy is None:
            policy = AuditRetentionPolicy(event_category=category)
            self._session.add(policy)
        policy.retention_days = retention_days
        policy.archive_before_delete = payload.archive_before_delete
        policy.archive_location = payload.archive_location
        policy.is_active = payload.is_active
        self._session.flush()

        AuditService(self._session, source=self._settings.service_name).record(
            action="retention_policy.upsert",
            actor_id=actor_id,
            resource_type="AUDIT_RETENTION_POLICY",
            resource_id=category,
            details={
                "requested_days": payload.retention_days,
                "retention_days": retention_days,
                "archive_before_delete": payload.archive_before_delete,
                "is_active": payload.is_active,
            },
        )
        self._logger.info(
            "retention_policy_saved",
            extra={"event_category": category, "retention_days": retention_days},
        )
        return policy

    def delete_policy(self, category: str, *, actor_id: Optional[str] = None) -> None:
        policy = self.get_policy(category)
        self._session.delete(policy)
        AuditService(self._session, source=self._settings.service_name).record(
            action="retention_policy.delete",
            actor_id=actor_id,
            resource_type="AUDIT_RETENTION_POLICY",
            resource_id=policy.event_category,
        )
        self._session.flush()

    def ensure_default_policies(self, archive_location: Optional[str] = None) -> None:
        """Create a policy with the default retention for every category that has none."""

        existing = set(self._session.scalars(select(AuditRetentionPolicy.event_category)))
        for category in AuditEventCategory:
            if category.value in existing:
                continue
            self._session.add(
                AuditRetentionPolicy(
                    event_category=category.value,
                    retention_days=self.effective_retention_days(
                        category.value, self._settings.default_retention_days
                    ),
                    archive_before_delete=archive_location is not None,
                    archive_location=archive_location,
                    is_active=True,
                )
            )
        self._session.flush()

    def run(self, now: Optional[datetime] = None) -> RetentionRunResult:
        """Archive, then delete, entries older than each active policy's window."""

        now = now or datetime.now(timezone.utc)
        results = [
            self._apply(policy, now)
            for policy in self.list_policies()
            if policy.is_active
        ]
        self._logger.info(
            "retention_run_completed",
            extra={
                "categories": len(results),
                "deleted": sum(result.deleted for result in results),
                "archived": sum(result.archived for result in results),
            },
        )
        return RetentionRunResult(started_at=now, categories=results)

    def _apply(self, policy: AuditRetentionPolicy, now: datetime) -> RetentionCategoryResult:
        # Clamped again here: rows written before a floor change must still honour it.
        days = self.effective_retention_days(policy.event_category, policy.retention_days)
        cutoff = now - timedelta(days=days)
        result = RetentionCategoryResult(
            event_category=policy.event_category,
            effective_retention_days=days,
            cutoff=cutoff,
        )
        archiver: Optional[AuditArchiver] = None
        if policy.archive_before_delete:
            if not policy.archive_location:
                result.error = "archive_location_missing"
                self._logger.error("retention_archive_unconfigured", extra={"event_category": policy.event_category})
                return result
            try:
                archiver = self._archiver_factory(policy.archive_location)
            except ArchiveError as exc:
                result.error = str(exc)
                self._logger.error(
                    "retention_archive_unconfigured",
                    extra={"event_category": policy.event_category, "error": str(exc)},
                )
                return result

        batch_size = self._settings.retention_batch_size
        while True:
            batch: Sequence[AuditLog] = list(
                self._session.scalars(
                    select(AuditLog)
                    .where(AuditLog.event_category == policy.event_category)
                    .where(AuditLog.timestamp < cutoff)
                    .order_by(AuditLog.id)
                    .limit(batch_size)
                )
            )
            if not batch:
                break
            if archiver is not None:
                try:
                    result.archive_locations.append(archiver.archive(category=policy.event_category, rows=batch))
                except ArchiveError as exc:
                    result.error = str(exc)
                    self._logger.error(
                        "retention_archive_failed",
                        extra={"event_category": policy.event_category, "error": str(exc)},
                    )
                    break
                result.archived += len(batch)
            ids = [row.id for row in batch]
            self._session.execute(
                delete(AuditLog).where(AuditLog.id.in_(ids)).execution_options(synchronize_session=False)
            )
            for row in batch:
                self._session.expunge(row)
            self._session.flush()
            result.deleted += len(ids)
            if len(batch) < batch_size:
                break

        if result.deleted:
            AuditService(self._session, source=self._settings.service_name).record(
                action="audit.retention.purge",
                actor_id=None,
                resource_type="AUDIT_LOG",
                resource_id=policy.event_category,
                event_type=AuditEventType.RETENTION_PURGE,
                details={
                    "cutoff": cutoff.isoformat(),
                    "deleted": result.deleted,
                    "archived": result.archived,
                    "archive_locations": result.archive_locations,
                },
                occurred_at=now,
            )
        self._logger.info(
            "retention_category_purged",
            extra={
                "event_category": policy.event_category,
                "retention_days": days,
                "archived": result.archived,
                "deleted": result.deleted,
            },
        )
        return result
