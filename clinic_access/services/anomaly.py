"""Suspicious activity detection over the audit log."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_access.core.config import AppSettings
from clinic_access.core.errors import ConflictError, NotFoundError
from clinic_access.models.anomaly import AnomalyRuleType, AnomalyThreshold, Severity, SuspiciousActivity
from clinic_access.models.audit_log import AuditLog
from clinic_access.schemas.audit import AuditEventCategory, AuditEventType
from clinic_access.schemas.retention import AnomalyScanResult, AnomalyThresholdUpsert, InvestigationCreate
from clinic_access.services.audit import AuditService
from clinic_access.services.notifications import AlertPublisher

MAX_LINKED_ENTRIES = 200


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class _Candidate:
    rule_type: AnomalyRuleType
    user_id: str
    window_start: datetime
    window_end: datetime
    event_count: int
    description: str
    audit_log_ids: List[int] = field(default_factory=list)
    fingerprint: Optional[str] = None


class AnomalyDetectionService:
    """Applies the configured heuristics and materializes findings for investigation.

    Findings are never resolved automatically. A burst that is still active on
    the next scan extends the open finding instead of creating a new one.
    """

    def __init__(
        self,
        session: Session,
        settings: AppSettings,
        *,
        alerts: Optional[AlertPublisher] = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._alerts = alerts
        self._logger = logging.getLogger("clinic_access.services.anomaly")

    # Thresholds

    def ensure_default_thresholds(self) -> None:
        defaults = {
            AnomalyRuleType.EXCESSIVE_PHI_ACCESS: (
                self._settings.anomaly_phi_distinct_patients,
                self._settings.anomaly_window_minutes,
                Severity.HIGH,
            ),
            AnomalyRuleType.REPEATED_ACCESS_DENIED: (
                self._settings.anomaly_repeated_denials,
                self._settings.anomaly_window_minutes,
                Severity.MEDIUM,
            ),
            AnomalyRuleType.EMERGENCY_ACCESS_OVERUSE: (
                self._settings.anomaly_emergency_per_day,
                24 * 60,
                Severity.HIGH,
            ),
        }
        existing = set(self._session.scalars(select(AnomalyThreshold.rule_type)))
        for rule_type, (threshold, window_minutes, severity) in defaults.items():
            if rule_type.value in existing:
                continue
            self._session.add(
                AnomalyThreshold(
                    rule_type=rule_type.value,
                    threshold=threshold,
                    window_minutes=window_minutes,
                    severity=severity.value,
                    is_active=True,
                )
            )
        self._session.flush()

    def list_thresholds(self) -> List[AnomalyThreshold]:
        return list(self._session.scalars(select(AnomalyThreshold).order_by(AnomalyThreshold.rule_type)))

    def upsert_threshold(
        self,
        rule_type: AnomalyRuleType,
        payload: AnomalyThresholdUpsert,
        *,
        actor_id: Optional[str] = None,
    ) -> AnomalyThreshold:
        threshold = self._session.scalar(
            select(AnomalyThreshold).where(AnomalyThreshold.rule_type == rule_type.value)
        )
        if threshold is None:
            threshold = AnomalyThreshold(rule_type=rule_type.value)
            self._session.add(threshold)
        threshold.threshold = payload.threshold
        threshold.window_minutes = payload.window_minutes
        threshold.severity = payload.severity.value
        threshold.is_active = payload.is_active
        self._session.flush()
        AuditService(self._session, source=self._settings.service_name).record(
            action="anomaly_threshold.upsert",
            actor_id=actor_id,
            resource_type="ANOMALY_THRESHOLD",
            resource_id=rule_type.value,
            details=payload.model_dump(mode="json"),
        )
        return threshold

    # Scan

    def scan(self, now: Optional[datetime] = None) -> AnomalyScanResult:
        now = _as_utc(now or datetime.now(timezone.utc))
        by_rule: Dict[str, int] = {}
        created = 0
        for threshold in self.list_thresholds():
            if not threshold.is_active:
                continue
            rule_type = AnomalyRuleType(threshold.rule_type)
            candidates = self._detect(rule_type, threshold, now)
            new_findings = 0
            for candidate in candidates:
                if self._materialize(candidate, Severity(threshold.severity), now):
                    new_findings += 1
            by_rule[rule_type.value] = new_findings
            created += new_findings
        self._session.flush()
        self._logger.info("anomaly_scan_completed", extra={"findings": created, "by_rule": by_rule})
        return AnomalyScanResult(scanned_at=now, findings=created, by_rule=by_rule)

    def _detect(self, rule_type: AnomalyRuleType, threshold: AnomalyThreshold, now: datetime) -> List[_Candidate]:
        window_start = now - timedelta(minutes=threshold.window_minutes)
        if rule_type is AnomalyRuleType.EXCESSIVE_PHI_ACCESS:
            return self._excessive_phi_access(threshold.threshold, window_start, now)
        if rule_type is AnomalyRuleType.REPEATED_ACCESS_DENIED:
            return self._repeated_denials(threshold.threshold, window_start, now)
        return self._emergency_overuse(threshold.threshold, window_start, now)

    def _entries(self, window_start: datetime, now: datetime, *conditions) -> List[Tuple[int, Optional[str], Optional[str], datetime]]:
        stmt = (
            select(AuditLog.id, AuditLog.user_id, AuditLog.patient_id, AuditLog.timestamp)
            .where(AuditLog.timestamp >= window_start)
            .where(AuditLog.timestamp < now)
            .where(AuditLog.user_id.is_not(None))
            .order_by(AuditLog.id)
        )
        for condition in conditions:
            stmt = stmt.where(condition)
        return list(self._session.execute(stmt).all())

    def _excessive_phi_access(self, limit: int, window_start: datetime, now: datetime) -> List[_Candidate]:
        patients: Dict[str, Set[str]] = defaultdict(set)
        ids: Dict[str, List[int]] = defaultdict(list)
        for entry_id, user_id, patient_id, _ in self._entries(
            window_start,
            now,
            AuditLog.is_phi_access.is_(True),
            AuditLog.is_success.is_(True),
            AuditLog.patient_id.is_not(None),
        ):
            patients[user_id].add(patient_id)
            ids[user_id].append(entry_id)
        return [
            _Candidate(
                rule_type=AnomalyRuleType.EXCESSIVE_PHI_ACCESS,
                user_id=user_id,
                window_start=window_start,
                window_end=now,
                event_count=len(distinct),
                description=f"Accessed PHI of {len(distinct)} distinct patients (threshold {limit})",
                audit_log_ids=ids[user_id][:MAX_LINKED_ENTRIES],
            )
            for user_id, distinct in sorted(patients.items())
            if len(distinct) > limit
        ]

    def _repeated_denials(self, limit: int, window_start: datetime, now: datetime) -> List[_Candidate]:
        ids: Dict[str, List[int]] = defaultdict(list)
        for entry_id, user_id, _, _ in self._entries(
            window_start,
            now,
            AuditLog.event_type == AuditEventType.ACCESS_DENIED.value,
        ):
            ids[user_id].append(entry_id)
        return [
            _Candidate(
                rule_type=AnomalyRuleType.REPEATED_ACCESS_DENIED,
                user_id=user_id,
                window_start=window_start,
                window_end=now,
                event_count=len(entry_ids),
                description=f"{len(entry_ids)} denied access attempts (threshold {limit})",
                audit_log_ids=entry_ids[:MAX_LINKED_ENTRIES],
            )
            for user_id, entry_ids in sorted(ids.items())
            if len(entry_ids) > limit
        ]

    def _emergency_overuse(self, limit: int, window_start: datetime, now: datetime) -> List[_Candidate]:
        # Counted per user per UTC day, over the days the window touches.
        day_start = datetime.combine(window_start.date(), datetime.min.time(), tzinfo=timezone.utc)
        per_day: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        for entry_id, user_id, _, timestamp in self._entries(
            day_start,
            now,
            AuditLog.event_type == AuditEventType.EMERGENCY_ACCESS.value,
            AuditLog.is_emergency_access.is_(True),
            AuditLog.is_success.is_(True),
        ):
            per_day[(user_id, _as_utc(timestamp).date().isoformat())].append(entry_id)

        candidates = []
        for (user_id, day), entry_ids in sorted(per_day.items()):
            if len(entry_ids) <= limit:
                continue
            start = datetime.fromisoformat(day).replace(tzinfo=timezone.utc)
            candidates.append(
                _Candidate(
                    rule_type=AnomalyRuleType.EMERGENCY_ACCESS_OVERUSE,
                    user_id=user_id,
                    window_start=start,
                    window_end=min(start + timedelta(days=1), now),
                    event_count=len(entry_ids),
                    description=f"Emergency access used {len(entry_ids)} times on {day} (threshold {limit})",
                    audit_log_ids=entry_ids[:MAX_LINKED_ENTRIES],
                    fingerprint=f"{AnomalyRuleType.EMERGENCY_ACCESS_OVERUSE.value}:{user_id}:{day}",
                )
            )
        return candidates

    def _materialize(self, candidate: _Candidate, severity: Severity, now: datetime) -> bool:
        """Create or extend a finding; returns True when a new finding was created."""

        existing = self._open_finding(candidate)
        if existing is not None:
            existing.event_count = max(existing.event_count, candidate.event_count)
            existing.window_end = candidate.window_end
            merged = list(dict.fromkeys([*existing.audit_log_ids, *candidate.audit_log_ids]))
            existing.audit_log_ids = merged[:MAX_LINKED_ENTRIES]
            existing.description = candidate.description
            return False

        finding = SuspiciousActivity(
            fingerprint=candidate.fingerprint
            or f"{candidate.rule_type.value}:{candidate.user_id}:{candidate.window_start.isoformat()}",
            rule_type=candidate.rule_type.value,
            severity=severity.value,
            user_id=candidate.user_id,
            description=candidate.description,
            event_count=candidate.event_count,
            window_start=candidate.window_start,
            window_end=candidate.window_end,
            detected_at=now,
            audit_log_ids=candidate.audit_log_ids,
            is_investigated=False,
        )
        self._session.add(finding)
        self._session.flush()
        self._logger.warning(
            "suspicious_activity_detected",
            extra={
                "finding_id": finding.id,
                "rule_type": candidate.rule_type.value,
                "severity": severity.value,
                "user_id": candidate.user_id,
                "event_count": candidate.event_count,
            },
        )
        self._notify(finding)
        return True

    def _open_finding(self, candidate: _Candidate) -> Optional[SuspiciousActivity]:
        if candidate.fingerprint is not None:
            return self._session.scalar(
                select(SuspiciousActivity).where(SuspiciousActivity.fingerprint == candidate.fingerprint)
            )
        findings = self._session.scalars(
            select(SuspiciousActivity)
            .where(SuspiciousActivity.rule_type == candidate.rule_type.value)
            .where(SuspiciousActivity.user_id == candidate.user_id)
            .where(SuspiciousActivity.is_investigated.is_(False))
            .order_by(SuspiciousActivity.window_end.desc())
        )
        for finding in findings:
            if _as_utc(finding.window_end) >= candidate.window_start:
                return finding
        return None

    def _notify(self, finding: SuspiciousActivity) -> None:
        if self._alerts is None:
            return
        try:
            self._alerts.publish(
                alert_type="SUSPICIOUS_ACTIVITY",
                severity=finding.severity,
                payload={
                    "finding_id": finding.id,
                    "rule_type": finding.rule_type,
                    "user_id": finding.user_id,
                    "event_count": finding.event_count,
                    "description": finding.description,
                },
            )
        except (BotoCoreError, ClientError):
            self._logger.warning("suspicious_activity_alert_failed", extra={"finding_id": finding.id})

    # Investigation workflow

    def list_findings(
        self,
        *,
        investigated: Optional[bool] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[SuspiciousActivity]:
        stmt = select(SuspiciousActivity).order_by(SuspiciousActivity.detected_at.desc(), SuspiciousActivity.id.desc())
        if investigated is not None:
            stmt = stmt.where(SuspiciousActivity.is_investigated.is_(investigated))
        if user_id is not None:
            stmt = stmt.where(SuspiciousActivity.user_id == user_id)
        return list(self._session.scalars(stmt.limit(limit)))

    def mark_investigated(
        self,
        finding_id: int,
        payload: InvestigationCreate,
        *,
        now: Optional[datetime] = None,
    ) -> SuspiciousActivity:
        finding = self._session.get(SuspiciousActivity, finding_id)
        if finding is None:
            raise NotFoundError(f"Suspicious activity {finding_id} not found")
        if finding.is_investigated:
            raise ConflictError(f"Suspicious activity {finding_id} was already investigated")
        finding.is_investigated = True
        finding.investigated_by = payload.investigated_by
        finding.investigated_at = now or datetime.now(timezone.utc)
        finding.investigation_notes = payload.notes
        self._session.flush()
        AuditService(self._session, source=self._settings.service_name).record(
            action="suspicious_activity.investigate",
            actor_id=payload.investigated_by,
            resource_type="SUSPICIOUS_ACTIVITY",
            resource_id=str(finding_id),
            event_type=AuditEventType.INVESTIGATION,
            event_category=AuditEventCategory.SECURITY,
        )
        self._logger.info(
            "suspicious_activity_investigated",
            extra={"finding_id": finding_id, "investigated_by": payload.investigated_by},
        )
        return finding
