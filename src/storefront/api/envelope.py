"""
storefront.api.envelope

Response envelope and error rendering.

Responsibilities:
- Wrap every payload as `{"success": bool, "body": ...}`.
- Render `StorefrontError`, request validation errors, routing misses and unhandled
  exceptions with `success=false`.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Generic, TypeVar

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.errors import StorefrontError
from storefront.observability.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    body: T


def ok(body: Any) -> dict[str, Any]:
    return {"success": True, "body": body}


def _failure(status_code: int, code: str, detail: Any, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            {"success": False, "body": {"error": code, "detail": detail, **extra}}
        ),
    )


async def _storefront_error(_: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StorefrontError)
    log.info("request_failed", error=exc.code, detail=exc.detail)
    return _failure(exc.status_code, exc.code, exc.detail, retryable=exc.retryable)


async def _validation_error(_: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    return _failure(422, "ValidationError", exc.errors())


async def _http_error(_: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    # Router-level misses (unknown path, wrong method) named like the domain codes.
    code = HTTPStatus(exc.status_code).phrase.replace(" ", "").replace("-", "")
    response = _failure(exc.status_code, code, exc.detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _unhandled_error(_: Request, exc: Exception) -> JSONResponse:
    log.error("request_crashed", error_type=type(exc).__name__, exc_info=exc)
    return _failure(500, "InternalError", "Internal server error")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StorefrontError, _storefront_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(Exception, _unhandled_error)


# --- Module Notes -----------------------------------------------------------
# Clients branch on `body.error`; `retryable` is true only for StaleVersion.
