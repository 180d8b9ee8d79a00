"""Anomaly thresholds, scans and the investigation workflow."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

from clinic_access.api.dependencies import get_anomaly_service
from clinic_access.models.anomaly import AnomalyRuleType
from clinic_access.schemas.retention import (
    AnomalyScanResult,
    AnomalyThresholdResponse,
    AnomalyThresholdUpsert,
    InvestigationCreate,
    SuspiciousActivityResponse,
)
from clinic_access.services.anomaly import AnomalyDetectionService

router = APIRouter()


@router.get("/anomaly-thresholds", response_model=List[AnomalyThresholdResponse])
def list_thresholds(service: AnomalyDetectionService = Depends(get_anomaly_service)) -> List[AnomalyThresholdResponse]:
    return [AnomalyThresholdResponse.model_validate(item) for item in service.list_thresholds()]


@router.put("/anomaly-thresholds/{rule_type}", response_model=AnomalyThresholdResponse)
def upsert_threshold(
    rule_type: AnomalyRuleType,
    payload: AnomalyThresholdUpsert,
    service: AnomalyDetectionService = Depends(get_anomaly_service),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> AnomalyThresholdResponse:
    return AnomalyThresholdResponse.model_validate(service.upsert_threshold(rule_type, payload, actor_id=x_actor_id))


@router.post("/anomaly-scan", response_model=AnomalyScanResult)
def run_anomaly_scan(service: AnomalyDetectionService = Depends(get_anomaly_service)) -> AnomalyScanResult:
    return service.scan()


@router.get("/suspicious-activities", response_model=List[SuspiciousActivityResponse])
def list_suspicious_activities(
    investigated: Optional[bool] = Query(default=None),
    user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    service: AnomalyDetectionService = Depends(get_anomaly_service),
) -> List[SuspiciousActivityResponse]:
    findings = service.list_findings(investigated=investigated, user_id=user_id, limit=limit)
    return [SuspiciousActivityResponse.model_validate(item) for item in findings]


@router.post("/suspicious-activities/{finding_id}/investigate", response_model=SuspiciousActivityResponse)
def investigate(
    finding_id: int,
    payload: InvestigationCreate,
    service: AnomalyDetectionService = Depends(get_anomaly_service),
) -> SuspiciousActivityResponse:
    return SuspiciousActivityResponse.model_validate(service.mark_investigated(finding_id, payload))
