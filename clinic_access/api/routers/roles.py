"""Role management endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from clinic_access.api.dependencies import get_policy_admin
from clinic_access.schemas.role import RoleCreate, RoleDuplicate, RoleResponse, RoleUpdate
from clinic_access.services.policy_admin import PolicyAdminService

router = APIRouter()


@router.post(
    "",
    response_model=RoleResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_role(
    payload: RoleCreate,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> RoleResponse:
    return service.create_role(payload, actor_id=x_actor_id)


@router.get(
    "",
    response_model=List[RoleResponse],
)
def list_roles(
    include_inactive: bool = Query(default=True),
    service: PolicyAdminService = Depends(get_policy_admin),
) -> List[RoleResponse]:
    return service.list_roles(include_inactive=include_inactive)


@router.get("/{role_id}", response_model=RoleResponse)
def get_role(role_id: int, service: PolicyAdminService = Depends(get_policy_admin)) -> RoleResponse:
    return service.get_role(role_id)


@router.patch(
    "/{role_id}",
    response_model=RoleResponse,
)
def update_role(
    role_id: int,
    payload: RoleUpdate,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> RoleResponse:
    return service.update_role(role_id, payload, actor_id=x_actor_id)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(
    role_id: int,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> Response:
    service.delete_role(role_id, actor_id=x_actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{role_id}/duplicate", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
def duplicate_role(
    role_id: int,
    payload: RoleDuplicate,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> RoleResponse:
    return service.duplicate_role(role_id, payload, actor_id=x_actor_id)
