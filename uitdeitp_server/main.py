# Copyright (C) 2024 uitdeITP Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""uitdeITP Server - phone verification API for ITP/RCA/rovinieta reminders."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from uitdeitp_server.config import settings
from uitdeitp_server.database import init_db
from uitdeitp_server.errors import register_error_handlers
from uitdeitp_server.routers import users, verification, verify_phone

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _get_cors_origins() -> list[str]:
    raw = (settings.cors_origins or "*").strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    if not (settings.notifyhub_url and settings.notifyhub_api_key):
        logger.info("NOTIFYHUB_URL / NOTIFYHUB_API_KEY not set - verification SMS will only be logged")
    if settings.rate_limit_backend == "memory":
        logger.info("Rate limits are kept in memory; set RATE_LIMIT_BACKEND=redis when running several instances")
    yield


app = FastAPI(
    title="uitdeITP Server",
    description="Phone verification for vehicle expiry reminders",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)

register_error_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, and duration for each request (no body or auth headers)."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response

# API v1
app.include_router(verify_phone.router, prefix="/api/v1")
app.include_router(verification.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")


@app.get("/")
async def root():
    """API info."""
    return {
        "name": "uitdeITP Server",
        "version": VERSION,
        "api": "/api/v1",
        "docs": "/api/docs",
    }


@app.get("/api/v1/health")
async def health():
    """Health check for load balancers."""
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("uitdeitp_server.main:app", host=settings.host, port=settings.port)
