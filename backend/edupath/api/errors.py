"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from edupath.domain.exceptions import RepositoryError, ValidationError


def _request_id(request: Request) -> str | None:
    return request.headers.get("X-Request-Id")


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": _request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": _request_id(request)}
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(RepositoryError)
    async def repository_exc_handler(request: Request, exc: RepositoryError):  # type: ignore[override]
        payload: dict[str, object] = {"detail": exc.detail, "message": str(exc), "request_id": _request_id(request)}
        if isinstance(exc, ValidationError):
            payload["errors"] = exc.errors
        return JSONResponse(status_code=exc.status_code, content=payload)
