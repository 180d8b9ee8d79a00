"""Audit log query, reporting, review and verification endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clinic_access.api.dependencies import (
    get_audit_query_service,
    get_db_session,
    get_emergency_review_service,
)
from clinic_access.schemas.audit import (
    AuditLogPage,
    AuditLogQuery,
    AuditQueryRequest,
    AuditVerificationResponse,
    EmergencyAccessReviewCreate,
    EmergencyAccessSummary,
    PHIAccessReport,
)
from clinic_access.services.audit_query import AuditQueryService
from clinic_access.services.audit_verifier import AuditVerifier
from clinic_access.services.emergency_reviews import EmergencyReviewService

router = APIRouter()


@router.post("/query", response_model=AuditLogPage)
def query_audit_log(
    payload: AuditQueryRequest,
    service: AuditQueryService = Depends(get_audit_query_service),
) -> AuditLogPage:
    filters = AuditLogQuery.model_validate(payload.model_dump(exclude={"page", "page_size"}))
    return service.query(filters, page=payload.page, page_size=payload.page_size)


@router.get("/phi-report", response_model=PHIAccessReport)
def phi_access_report(
    start: datetime = Query(...),
    end: datetime = Query(...),
    service: AuditQueryService = Depends(get_audit_query_service),
) -> PHIAccessReport:
    return service.phi_access_report(start, end)


@router.get("/emergency-reviews", response_model=List[EmergencyAccessSummary])
def list_emergency_accesses(
    unreviewed_only: bool = Query(default=True),
    limit: int = Query(default=100, ge=1, le=1000),
    service: EmergencyReviewService = Depends(get_emergency_review_service),
) -> List[EmergencyAccessSummary]:
    return service.list_emergency_accesses(unreviewed_only=unreviewed_only, limit=limit)


@router.post("/emergency-reviews/{entry_id}", response_model=EmergencyAccessSummary)
def review_emergency_access(
    entry_id: int,
    payload: EmergencyAccessReviewCreate,
    service: EmergencyReviewService = Depends(get_emergency_review_service),
) -> EmergencyAccessSummary:
    return service.review(entry_id, payload)


@router.get("/verify", response_model=AuditVerificationResponse)
def verify_audit_log(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    session: Session = Depends(get_db_session),
) -> AuditVerificationResponse:
    result = AuditVerifier(session).verify(start=start, end=end)
    return AuditVerificationResponse(checked=result.checked, valid=result.valid, failed_ids=result.failed_ids)
