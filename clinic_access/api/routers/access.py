"""Access check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from clinic_access.api.dependencies import get_access_service
from clinic_access.schemas.access import AccessCheckRequest, AccessCheckResponse, EmergencyAccessRequest
from clinic_access.services.access import AccessCheckService

router = APIRouter()


@router.post("/check", response_model=AccessCheckResponse)
def check_access(
    payload: AccessCheckRequest,
    service: AccessCheckService = Depends(get_access_service),
) -> AccessCheckResponse:
    result = service.check_access(
        payload.user_id,
        payload.resource_type,
        payload.action,
        resource_id=payload.resource_id,
        branch_id=payload.branch_id,
        patient_id=payload.patient_id,
        attributes=payload.attributes,
        emergency_justification=payload.emergency_justification,
        correlation_id=payload.correlation_id,
        timeout_ms=payload.timeout_ms,
    )
    return AccessCheckResponse.from_result(result)


@router.post("/emergency", response_model=AccessCheckResponse)
def request_emergency_access(
    payload: EmergencyAccessRequest,
    service: AccessCheckService = Depends(get_access_service),
) -> AccessCheckResponse:
    result = service.request_emergency_access(
        payload.user_id,
        payload.resource_type,
        payload.resource_id,
        payload.justification,
        action=payload.action,
        branch_id=payload.branch_id,
        patient_id=payload.patient_id,
        attributes=payload.attributes,
        correlation_id=payload.correlation_id,
    )
    return AccessCheckResponse.from_result(result)
