from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from advisory.config import Settings
from advisory.controllers import v1
from advisory.db import dispose_session_factory, init_db
from advisory.logger import setup_logging
from advisory.services.stripe_gateway import StripeGateway

settings = Settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Clients live on app.state and reach handlers through dependencies
    app.state.session_factory = await asyncio.to_thread(init_db, settings)
    app.state.stripe_gateway = StripeGateway.from_settings(settings)
    app.state.redis = redis.from_url(
        settings.redis_url, encoding="utf-8", decode_responses=True
    )
    yield
    await app.state.redis.aclose()
    await asyncio.to_thread(dispose_session_factory, app.state.session_factory)


app = FastAPI(
    title="Advisory Booking API",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(v1.router)

Instrumentator().instrument(app).expose(app)
