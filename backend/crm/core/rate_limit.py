"""Request rate limits for the audience preview and AI endpoints (SlowAPI)."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address


def rate_limit_key(request: Request) -> str:
    """Limit signed-in users per account, anonymous callers per address."""

    user_code = getattr(request.state, "user_code", None)
    if user_code:
        return f"user:{user_code}"
    return get_remote_address(request)


limiter = Limiter(key_func=rate_limit_key)


async def _rate_limit_exceeded(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.bind(path=request.url.path, limit=str(exc.detail)).warning("rate_limited")
    return JSONResponse(
        status_code=429, content={"success": False, "message": "Too many requests"}
    )


def init_rate_limiter(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded)
