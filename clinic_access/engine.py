"""Process-wide assembly of the access control engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from clinic_access.audit.pipeline import AuditPipeline, AuditWriter, DatabaseAuditWriter
from clinic_access.core.config import AppSettings, get_settings
from clinic_access.core.database import SessionFactory, session_scope
from clinic_access.policy.emergency import EmergencyAccessController
from clinic_access.policy.evaluator import RuleEvaluator
from clinic_access.policy.resolver import PermissionResolver
from clinic_access.policy.store import PolicyStore
from clinic_access.services.access import AccessCheckService
from clinic_access.services.anomaly import AnomalyDetectionService
from clinic_access.services.cache import PermissionCache, get_permission_cache
from clinic_access.services.consent import AttributeProvider, HttpConsentProvider
from clinic_access.services.notifications import AlertPublisher, get_alert_publisher
from clinic_access.services.policy_admin import PolicyAdminService
from clinic_access.services.retention import RetentionService

LOGGER = logging.getLogger("clinic_access.engine")


@dataclass
class AccessControlEngine:
    """Everything a request handler needs, built once per process."""

    settings: AppSettings
    store: PolicyStore
    resolver: PermissionResolver
    pipeline: AuditPipeline
    access: AccessCheckService
    admin: PolicyAdminService
    alerts: AlertPublisher
    session_factory: SessionFactory = session_scope
    attribute_providers: List[AttributeProvider] = field(default_factory=list)

    def start(self) -> None:
        """Seed defaults, load the first snapshot and start the audit consumer."""

        self.store.subscribe(self.resolver.on_snapshot_swapped)
        self.admin.ensure_catalog()
        with self.session_factory() as session:
            RetentionService(session, self.settings).ensure_default_policies()
            AnomalyDetectionService(session, self.settings, alerts=self.alerts).ensure_default_thresholds()
        self.store.refresh()
        if self.settings.audit_consumer_autostart:
            self.pipeline.start()
        LOGGER.info(
            "access_engine_started",
            extra={"policy_version": self.store.version, "consumer_running": self.pipeline.running},
        )

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop the consumer after flushing what is buffered."""

        self.pipeline.stop(timeout)
        self.access.close()
        LOGGER.info("access_engine_stopped", extra={"pending_audit_entries": self.pipeline.pending})


def build_engine(
    settings: Optional[AppSettings] = None,
    *,
    session_factory: SessionFactory = session_scope,
    audit_writer: Optional[AuditWriter] = None,
    alerts: Optional[AlertPublisher] = None,
    cache: Optional[PermissionCache] = None,
    attribute_providers: Optional[Sequence[AttributeProvider]] = None,
) -> AccessControlEngine:
    settings = settings or get_settings()
    alerts = alerts if alerts is not None else get_alert_publisher()
    if attribute_providers is None:
        attribute_providers = (
            [HttpConsentProvider(settings.consent_service_url)] if settings.consent_service_url else []
        )

    store = PolicyStore(session_factory)
    resolver = PermissionResolver(cache if cache is not None else get_permission_cache())
    pipeline = AuditPipeline(
        audit_writer or DatabaseAuditWriter(session_factory, source=settings.service_name),
        capacity=settings.audit_buffer_size,
        phi_enqueue_timeout_ms=settings.audit_phi_enqueue_timeout_ms,
        persist_attempts=settings.audit_persist_attempts,
        retry_backoff_ms=settings.audit_retry_backoff_ms,
    )
    emergency = EmergencyAccessController(
        pipeline,
        audit_timeout_ms=settings.emergency_audit_timeout_ms,
        min_justification_length=settings.emergency_justification_min_length,
        alerts=alerts,
        source=settings.service_name,
    )
    access = AccessCheckService(
        store=store,
        resolver=resolver,
        evaluator=RuleEvaluator(),
        emergency=emergency,
        pipeline=pipeline,
        attribute_providers=attribute_providers,
        attribute_lookup_timeout_ms=settings.attribute_lookup_timeout_ms,
        emergency_audit_timeout_ms=settings.emergency_audit_timeout_ms,
        source=settings.service_name,
    )
    admin = PolicyAdminService(store, resolver, session_factory=session_factory, source=settings.service_name)
    return AccessControlEngine(
        settings=settings,
        store=store,
        resolver=resolver,
        pipeline=pipeline,
        access=access,
        admin=admin,
        alerts=alerts,
        session_factory=session_factory,
        attribute_providers=list(attribute_providers),
    )
