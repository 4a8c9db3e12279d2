"""
Health Check Endpoints

Liveness for load balancers, plus a readiness view that says whether the
funnel schema is applied and which outbound integrations are configured.
"""

import os
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from funnelforge import __version__
from funnelforge.api.deps import get_db
from funnelforge.config import GENERATION_MODEL, OBJECT_STORE_URL


router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime


class DatabaseHealthResponse(BaseModel):
    connected: bool
    schema_ready: bool = False
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class ReadinessResponse(BaseModel):
    generation_configured: bool
    generation_model: str
    object_store_configured: bool


@router.get("/health", response_model=HealthResponse)
def health_check():
    """Returns 200 while the process is up. Touches no dependencies."""
    return HealthResponse(
        status="ok",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/health/db", response_model=DatabaseHealthResponse)
def database_health_check(db=Depends(get_db)):
    """
    Database reachability and whether init-db has been run.

    Failures are reported in the body rather than as an error status so a
    dashboard can show the reason.
    """
    try:
        start = time.time()
        with db.cursor() as cur:
            cur.execute("SELECT to_regclass('public.funnels') IS NOT NULL AS schema_ready")
            row = cur.fetchone()
        latency = (time.time() - start) * 1000
    except Exception as e:
        return DatabaseHealthResponse(connected=False, error=str(e))

    return DatabaseHealthResponse(
        connected=True,
        schema_ready=bool(row and row["schema_ready"]),
        latency_ms=round(latency, 2),
    )


@router.get("/health/ready", response_model=ReadinessResponse)
def readiness_check():
    """Which outbound integrations have credentials or endpoints configured."""
    return ReadinessResponse(
        generation_configured=bool(os.getenv("OPENAI_API_KEY")),
        generation_model=GENERATION_MODEL,
        object_store_configured=bool(OBJECT_STORE_URL),
    )
