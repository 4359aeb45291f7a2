"""Custom ASGI middleware used by the FastAPI app."""

from __future__ import annotations

import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from crm.core.config import settings
from crm.core.logging import request_id_ctx_var, user_code_ctx_var

# Probe traffic is logged at DEBUG so it does not drown the access log.
_PROBE_PATHS = frozenset({"/api/healthz", "/api/readyz"})


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the logging context and writes one access record per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        request_token = request_id_ctx_var.set(request_id)
        user_token = user_code_ctx_var.set("-")
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            level = "DEBUG" if request.url.path in _PROBE_PATHS else "INFO"
            logger.bind(
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                user_code=getattr(request.state, "user_code", "-"),
            ).log(level, "request_completed")
            request_id_ctx_var.reset(request_token)
            user_code_ctx_var.reset(user_token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies whose declared size exceeds ``MAX_REQUEST_BYTES``.

    Rule trees and campaign payloads are small JSON documents.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        content_length = request.headers.get("content-length")
        if content_length is None:
            return await call_next(request)

        try:
            size = int(content_length)
        except ValueError:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": "Invalid Content-Length header"},
            )
        if size > settings.MAX_REQUEST_BYTES:
            logger.bind(size=size, limit=settings.MAX_REQUEST_BYTES).warning("request_too_large")
            return JSONResponse(
                status_code=413,
                content={"success": False, "message": "Request entity too large"},
            )
        return await call_next(request)
