"""Translate sync-layer failures into structured JSON responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.calendar.errors import (
    AuthError,
    LocalEventNotFound,
    MappingConflict,
    RemoteApiError,
    TenantConfigInvalid,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__, **extra},
    )


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path}: {exc}")
    return _error(401, exc, reauthorize=True)


async def tenant_config_handler(request: Request, exc: TenantConfigInvalid) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path}: {exc}")
    return _error(409, exc)


async def not_found_handler(request: Request, exc: LocalEventNotFound) -> JSONResponse:
    return _error(404, exc)


async def remote_api_handler(request: Request, exc: RemoteApiError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path}: Graph answered {exc.status}")
    return _error(502, exc, upstream_status=exc.status, upstream_body=exc.body)


async def mapping_conflict_handler(request: Request, exc: MappingConflict) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return _error(500, exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(TenantConfigInvalid, tenant_config_handler)
    app.add_exception_handler(LocalEventNotFound, not_found_handler)
    app.add_exception_handler(RemoteApiError, remote_api_handler)
    app.add_exception_handler(MappingConflict, mapping_conflict_handler)
