"""Data access rule endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from clinic_access.api.dependencies import get_policy_admin
from clinic_access.schemas.rule import RuleCreate, RuleResponse, RuleUpdate
from clinic_access.services.policy_admin import PolicyAdminService

router = APIRouter()


@router.get("", response_model=List[RuleResponse])
def list_rules(
    resource_type: Optional[str] = Query(default=None),
    service: PolicyAdminService = Depends(get_policy_admin),
) -> List[RuleResponse]:
    return [RuleResponse.model_validate(rule) for rule in service.list_rules(resource_type=resource_type)]


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: RuleCreate,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> RuleResponse:
    return RuleResponse.model_validate(service.create_rule(payload, actor_id=x_actor_id))


@router.patch("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    payload: RuleUpdate,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> RuleResponse:
    return RuleResponse.model_validate(service.update_rule(rule_id, payload, actor_id=x_actor_id))


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    rule_id: int,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> Response:
    service.delete_rule(rule_id, actor_id=x_actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
