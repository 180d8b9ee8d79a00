"""Exception handlers for the FastAPI app."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clinic_access.core.errors import AccessControlError, ErrorKind

_STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.POLICY_MISCONFIGURATION: 422,
    ErrorKind.AUDIT_WRITE_FAILURE: 503,
    ErrorKind.TIMEOUT: 503,
    ErrorKind.EVALUATION_FAILURE: 503,
}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AccessControlError)
    async def access_control_error_handler(request: Request, exc: AccessControlError) -> JSONResponse:  # noqa: WPS430
        status_code = _STATUS_CODES.get(exc.kind, 400)
        detail = str(exc) if status_code < 500 else "Service temporarily unavailable"
        return JSONResponse(status_code=status_code, content={"detail": detail, "category": exc.kind.category})
