"""Router registrations."""

from fastapi import APIRouter

from clinic_access.api.routers import (
    access,
    anomalies,
    audit,
    health,
    permissions,
    retention,
    roles,
    rules,
    users,
)


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, tags=["health"])
    router.include_router(permissions.router, prefix="/api/v1/permissions", tags=["permissions"])
    router.include_router(roles.router, prefix="/api/v1/roles", tags=["roles"])
    router.include_router(rules.router, prefix="/api/v1/rules", tags=["rules"])
    router.include_router(users.router, prefix="/api/v1/users", tags=["users"])
    router.include_router(access.router, prefix="/api/v1/access", tags=["access"])
    router.include_router(audit.router, prefix="/api/v1/audit", tags=["audit"])
    router.include_router(retention.router, prefix="/api/v1/audit", tags=["retention"])
    router.include_router(anomalies.router, prefix="/api/v1/audit", tags=["anomalies"])
    return router
