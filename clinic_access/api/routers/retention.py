"""Audit retention policy endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Response, status

from clinic_access.api.dependencies import get_retention_service
from clinic_access.schemas.retention import RetentionPolicyResponse, RetentionPolicyUpsert, RetentionRunResult
from clinic_access.services.retention import RetentionService

router = APIRouter()


@router.get("/retention-policies", response_model=List[RetentionPolicyResponse])
def list_retention_policies(service: RetentionService = Depends(get_retention_service)) -> List[RetentionPolicyResponse]:
    return [RetentionPolicyResponse.model_validate(policy) for policy in service.list_policies()]


@router.get("/retention-policies/{category}", response_model=RetentionPolicyResponse)
def get_retention_policy(
    category: str,
    service: RetentionService = Depends(get_retention_service),
) -> RetentionPolicyResponse:
    return RetentionPolicyResponse.model_validate(service.get_policy(category))


@router.put("/retention-policies/{category}", response_model=RetentionPolicyResponse)
def upsert_retention_policy(
    category: str,
    payload: RetentionPolicyUpsert,
    service: RetentionService = Depends(get_retention_service),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> RetentionPolicyResponse:
    return RetentionPolicyResponse.model_validate(service.upsert_policy(category, payload, actor_id=x_actor_id))


@router.delete("/retention-policies/{category}", status_code=status.HTTP_204_NO_CONTENT)
def delete_retention_policy(
    category: str,
    service: RetentionService = Depends(get_retention_service),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> Response:
    service.delete_policy(category, actor_id=x_actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/retention/run", response_model=RetentionRunResult)
def run_retention(service: RetentionService = Depends(get_retention_service)) -> RetentionRunResult:
    return service.run()
