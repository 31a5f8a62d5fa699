"""
pulse.api.main — FastAPI application entry point
=================================================

Run with::

    uvicorn pulse.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

load_dotenv()

from pulse.api.deps import get_engine, get_redis  # noqa: E402
from pulse.api.routes.admin import router as admin_router  # noqa: E402
from pulse.api.routes.stats import router as stats_router  # noqa: E402
from pulse.services.log_queue import RawEventQueue  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine."""
    engine = app.dependency_overrides.get(get_engine, get_engine)()
    logger.info("Pulse API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("Pulse API shutting down")


app = FastAPI(
    title="Pulse Activity API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(stats_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/health/pipeline")
def pipeline_health(redis_client=Depends(get_redis)):
    """Raw event backlog waiting for the next log sync."""
    try:
        backlog = RawEventQueue(redis_client).queue_length()
    except RedisError:
        logger.warning("Pipeline health: Redis unreachable", exc_info=True)
        return {"status": "degraded", "redis": "unreachable", "log_queue_length": None}
    return {"status": "ok", "redis": "ok", "log_queue_length": backlog}
