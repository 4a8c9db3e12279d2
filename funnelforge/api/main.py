"""
FunnelForge API - Main Application

FastAPI application for funnel generation, standalone page serving,
telemetry ingest and A/B experiments.

Run with:
    uvicorn funnelforge.api.main:app --reload --port 8000

API Documentation available at:
    - Swagger UI: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import logging
import math
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from funnelforge.logging_utils import configure_api_logging

# File-based logging survives stdout/pipe issues during reloads
_LOG_FILE = "/tmp/funnelforge-app.log"
configure_api_logging(_LOG_FILE)

# Load .env from project root before config-reading modules are imported
load_dotenv(Path(__file__).parent.parent.parent / ".env")
from fastapi.middleware.cors import CORSMiddleware
from openai import APIStatusError

from funnelforge import __version__
from funnelforge.api.routers import analytics, events, experiments, funnels, health, pages
from funnelforge.errors import (
    ExperimentConflictError,
    FetchConnectionError,
    FetchTimeoutError,
    FunnelError,
    GenerationBusyError,
    GenerationStalledError,
    MalformedOutputError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from funnelforge.services.generation_client import is_overloaded

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (GenerationBusyError, 409),
    (ExperimentConflictError, 409),
    (RateLimitedError, 429),
    (MalformedOutputError, 502),
    (FetchConnectionError, 502),
    (FetchTimeoutError, 504),
    (GenerationStalledError, 504),
)


def status_for(error: FunnelError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    logger.info(f"FunnelForge API {__version__} starting")
    yield


app = FastAPI(
    lifespan=lifespan,
    title="FunnelForge API",
    description="""
    Generate multi-page sales funnels from a product brief, serve them as
    standalone pages, and improve them with A/B experiments.

    ## Features

    - **Generation**: Create funnels from briefs, resumable page generation
    - **Serving**: Self-contained HTML pages with built-in telemetry
    - **Analytics**: KPIs, step conversion, sessions and visitors
    - **Experiments**: Significance testing, promotion, AI-proposed variants
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Bundled pages post telemetry from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FunnelError)
async def funnel_error_handler(request: Request, exc: FunnelError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(math.ceil(exc.retry_after))}
    return JSONResponse(status_code=status, content={"detail": str(exc)}, headers=headers)


@app.exception_handler(APIStatusError)
async def upstream_error_handler(request: Request, exc: APIStatusError):
    status = 503 if is_overloaded(exc) else 502
    logger.error(f"{request.method} {request.url.path} upstream error {exc.status_code}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# Register routers; funnels last so /api/funnel/{funnel_id} never shadows fixed paths
app.include_router(health.router)
app.include_router(events.router)
app.include_router(analytics.router)
app.include_router(experiments.router)
app.include_router(pages.router)
app.include_router(funnels.router)


@app.get("/")
def root():
    """Root endpoint with API information."""
    return {
        "name": "FunnelForge API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
