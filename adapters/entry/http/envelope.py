from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.services.exceptions import OmniSwapError

logger = logging.getLogger(__name__)


def _request_id(request: Optional[Request]) -> str:
    if request is not None:
        rid = request.headers.get("X-Request-Id")
        if rid:
            return rid
    return uuid.uuid4().hex


def _meta(request: Optional[Request]) -> Dict[str, Any]:
    return {
        "request_id": _request_id(request),
        "timestamp": MongoEntity.now_iso(),
        "version": get_settings().API_VERSION,
    }


def ok(data: Any, request: Optional[Request] = None) -> Dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data), "meta": _meta(request)}


def error_body(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        err["details"] = jsonable_encoder(details)
    return {"success": False, "error": err}


def install_error_handlers(app: FastAPI) -> None:
    """
    Render every failure in the error envelope.
    """

    @app.exception_handler(OmniSwapError)
    async def _omniswap_error(request: Request, exc: OmniSwapError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.http_status, content=error_body(exc.code, exc.message, exc.details))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=error_body("VALIDATION_ERROR", "request validation failed", exc.errors()),
        )

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        code = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND"}.get(exc.status_code, "HTTP_ERROR")
        return JSONResponse(status_code=exc.status_code, content=error_body(code, str(exc.detail)))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=error_body("INTERNAL_ERROR", "internal server error"))
