"""User role assignment endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header

from clinic_access.api.dependencies import get_policy_admin
from clinic_access.schemas.assignment import UserAccessResponse, UserRolesAssign
from clinic_access.services.policy_admin import PolicyAdminService

router = APIRouter()


@router.put("/{user_id}/roles", response_model=UserAccessResponse)
def assign_roles(
    user_id: str,
    payload: UserRolesAssign,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> UserAccessResponse:
    return service.assign_roles(user_id, payload, actor_id=x_actor_id or payload.assigned_by)


@router.delete("/{user_id}/roles/{role_id}", response_model=UserAccessResponse)
def remove_role(
    user_id: str,
    role_id: int,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> UserAccessResponse:
    return service.remove_role(user_id, role_id, actor_id=x_actor_id)


@router.get("/{user_id}/access", response_model=UserAccessResponse)
def get_user_access(user_id: str, service: PolicyAdminService = Depends(get_policy_admin)) -> UserAccessResponse:
    return service.get_user_access(user_id)
