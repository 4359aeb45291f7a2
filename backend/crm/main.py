"""Application entry point for the CRM segmentation API service."""

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from crm.api.routes.ai import router as ai_router
from crm.api.routes.auth import router as auth_router
from crm.api.routes.campaigns import router as campaigns_router
from crm.api.routes.segments import router as segments_router
from crm.core.config import settings
from crm.core.db import engine, get_session
from crm.core.logging import setup_logging
from crm.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from crm.core.rate_limit import init_rate_limiter
from crm.models.customer import Customer
from crm.segments.errors import RuleValidationError

setup_logging()

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)

init_rate_limiter(app)

app.add_middleware(RequestContextLogMiddleware)


# The SPA sends the bearer token and its own request id; nothing else.
_CORS_HEADERS = ["Authorization", "Content-Type", "X-Request-ID"]


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:5173"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=_CORS_HEADERS,
    expose_headers=["X-Request-ID"],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


def _jsonable_errors(errors: list) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]


# Every error body carries ``success: false`` and a readable ``message``;
# ``detail`` is kept for FastAPI-style consumers.
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message, "detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = " -> ".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid request: {location}: {first.get('msg', 'validation failed')}"
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": message, "detail": _jsonable_errors(errors)},
    )


@app.exception_handler(RuleValidationError)
async def rule_validation_handler(request: Request, exc: RuleValidationError):
    logger.bind(path=exc.path, error=exc.message).info("segment_rules_rejected")
    return JSONResponse(
        status_code=422,
        content={"success": False, "message": exc.message, "path": exc.path},
    )


@app.on_event("shutdown")
async def shutdown_event():
    await engine.dispose()


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/api/readyz", tags=["system"], summary="Readiness probe")
async def readyz(session: AsyncSession = Depends(get_session)) -> dict[str, bool]:
    """Ready once the customer table, which every audience query reads, answers."""

    try:
        await session.execute(select(Customer.id).limit(1))
    except SQLAlchemyError as exc:
        logger.bind(error=str(exc)).warning("readiness_check_failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not reachable"
        ) from exc
    return {"ready": True}


app.include_router(auth_router, prefix="/api")
app.include_router(segments_router, prefix="/api")
app.include_router(campaigns_router, prefix="/api")
app.include_router(ai_router, prefix="/api")
