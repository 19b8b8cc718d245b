from __future__ import annotations

import logging

from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy.orm import sessionmaker

from advisory.config import Settings
from advisory.models import ErrorCode
from advisory.services.stripe_gateway import StripeGateway

settings = Settings()

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    code: str
    message: str


def error(status_code: int, code: ErrorCode | str, message: str) -> HTTPException:
    err = ErrorResponse(code=getattr(code, "value", code), message=message)
    return HTTPException(status_code=status_code, detail=err.model_dump())


def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory


def get_stripe_gateway(request: Request) -> StripeGateway:
    return request.app.state.stripe_gateway


def get_redis(request: Request):
    return request.app.state.redis


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    if x_api_ver is None:
        raise error(426, ErrorCode.UPGRADE_REQUIRED, "Missing API version")

    if x_api_ver != "v1":
        raise error(426, ErrorCode.UPGRADE_REQUIRED, "Invalid API version")

    if x_api_key != settings.api_key:
        raise error(401, ErrorCode.UNAUTHORIZED, "Invalid API key")

    if not x_user_id:
        raise error(401, ErrorCode.UNAUTHORIZED, "Missing user ID")

    return x_user_id


async def rate_limit(
    request: Request,
    user_id: str = Depends(require_api_headers),
    redis_client=Depends(get_redis),
) -> str:
    """Throttle requests by IP and user via Redis."""
    client_host = request.client.host if request.client else ""
    ip = client_host
    xff = request.headers.get("X-Forwarded-For")
    if xff and client_host in settings.trusted_proxies:
        forwarded = [h.strip() for h in xff.split(",") if h.strip()]
        proxies = forwarded[1:] + [client_host]
        if forwarded and all(p in settings.trusted_proxies for p in proxies):
            ip = forwarded[0]
    ip_key = f"rate:ip:{ip}"
    user_key = f"rate:user:{user_id}"

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        pipe.incr(user_key)
        pipe.expire(user_key, 60)
        ip_count, _, user_count, _ = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        raise error(
            503, ErrorCode.SERVICE_UNAVAILABLE, "Rate limiter unavailable"
        ) from exc
    if ip_count > 30 or user_count > 120:
        raise error(429, ErrorCode.TOO_MANY_REQUESTS, "Rate limit exceeded")

    return user_id
