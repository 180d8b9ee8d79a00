"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from clinic_access.core.config import AppSettings
from clinic_access.core.database import get_session
from clinic_access.engine import AccessControlEngine
from clinic_access.services.access import AccessCheckService
from clinic_access.services.anomaly import AnomalyDetectionService
from clinic_access.services.audit_query import AuditQueryService
from clinic_access.services.emergency_reviews import EmergencyReviewService
from clinic_access.services.policy_admin import PolicyAdminService
from clinic_access.services.retention import RetentionService


def get_db_session() -> Session:
    yield from get_session()


def get_engine(request: Request) -> AccessControlEngine:
    return request.app.state.engine


def get_app_settings(engine: AccessControlEngine = Depends(get_engine)) -> AppSettings:
    return engine.settings


def get_access_service(engine: AccessControlEngine = Depends(get_engine)) -> AccessCheckService:
    return engine.access


def get_policy_admin(engine: AccessControlEngine = Depends(get_engine)) -> PolicyAdminService:
    return engine.admin


def get_audit_query_service(session: Session = Depends(get_db_session)) -> AuditQueryService:
    return AuditQueryService(session)


def get_emergency_review_service(session: Session = Depends(get_db_session)) -> EmergencyReviewService:
    return EmergencyReviewService(session)


def get_retention_service(
    session: Session = Depends(get_db_session),
    settings: AppSettings = Depends(get_app_settings),
) -> RetentionService:
    return RetentionService(session, settings)


def get_anomaly_service(
    session: Session = Depends(get_db_session),
    engine: AccessControlEngine = Depends(get_engine),
) -> AnomalyDetectionService:
    return AnomalyDetectionService(session, engine.settings, alerts=engine.alerts)
