"""Permission catalogue endpoints."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Response, status

from clinic_access.api.dependencies import get_policy_admin
from clinic_access.schemas.permission import PermissionCreate, PermissionResponse
from clinic_access.services.policy_admin import PolicyAdminService

router = APIRouter()


@router.get("", response_model=List[PermissionResponse])
def list_permissions(
    category: Optional[str] = Query(default=None),
    service: PolicyAdminService = Depends(get_policy_admin),
) -> List[PermissionResponse]:
    return [PermissionResponse.model_validate(item) for item in service.list_permissions(category=category)]


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
def create_permission(
    payload: PermissionCreate,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> PermissionResponse:
    return PermissionResponse.model_validate(service.create_permission(payload, actor_id=x_actor_id))


@router.delete("/{code}", status_code=status.HTTP_204_NO_CONTENT)
def delete_permission(
    code: str,
    service: PolicyAdminService = Depends(get_policy_admin),
    x_actor_id: Optional[str] = Header(default=None, alias="X-Actor-Id"),
) -> Response:
    service.delete_permission(code, actor_id=x_actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
