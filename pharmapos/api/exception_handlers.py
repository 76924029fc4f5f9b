# FILE: pharmapos/api/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pharmapos.api.response import err
from pharmapos.core.errors import InventoryError

logger = logging.getLogger(__name__)


def _validation_details(exc: RequestValidationError):
    out = []
    for e in exc.errors():
        out.append({
            "loc": [str(x) for x in e.get("loc", ())],
            "msg": e.get("msg"),
            "type": e.get("type"),
        })
    return out


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.msg)
        return err(msg=exc.msg, status_code=exc.status_code, code=exc.code, details=exc.details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return err(msg=msg, status_code=exc.status_code, code="http_error")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(msg="Validation error", status_code=400, code="validation_error",
                   details=_validation_details(exc))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
        return err(msg="Database constraint error (duplicate/invalid reference).",
                   status_code=409, code="conflict")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return err(msg="Internal server error", status_code=500, code="internal_error")
