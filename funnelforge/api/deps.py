"""
FastAPI Dependency Injection

Provides database connections, services, caller identity and rate limiters
for API endpoints. Every dependency here can be replaced through
app.dependency_overrides in tests.
"""

from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException

from funnelforge.config import (
    BRIEF_RATE_LIMIT_SECONDS,
    CONCLUDE_RATE_LIMIT_SECONDS,
    IMPROVE_RATE_LIMIT_SECONDS,
)
from funnelforge.db import FunnelStore
from funnelforge.db.connection import connect
from funnelforge.services.brief_orchestrator import BriefOrchestrator
from funnelforge.services.experiment_engine import ExperimentEngine
from funnelforge.services.image_rehost import HttpObjectStore, ImageRehoster
from funnelforge.services.page_synthesizer import PageSynthesizer
from funnelforge.services.rate_limiter import KeyedRateLimiter
from funnelforge.services.telemetry_ingest import TelemetryIngest


def get_db() -> Generator:
    """
    FastAPI dependency for database connections.

    Yields a database connection with RealDictCursor for dict-style row access.
    Automatically commits on success, rolls back on error, and closes connection.
    """
    conn = connect()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_funnel_store(db=Depends(get_db)) -> FunnelStore:
    return FunnelStore(db)


def get_synthesizer() -> PageSynthesizer:
    return PageSynthesizer()


def get_orchestrator(
    store: FunnelStore = Depends(get_funnel_store),
    synthesizer: PageSynthesizer = Depends(get_synthesizer),
) -> BriefOrchestrator:
    return BriefOrchestrator(store, synthesizer)


def get_telemetry(store: FunnelStore = Depends(get_funnel_store)) -> TelemetryIngest:
    return TelemetryIngest(store)


def get_experiment_engine(
    store: FunnelStore = Depends(get_funnel_store),
    synthesizer: PageSynthesizer = Depends(get_synthesizer),
) -> ExperimentEngine:
    return ExperimentEngine(store, synthesizer)


# =============================================================================
# Identity
# =============================================================================


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Caller identity for mutating routes.

    Authentication happens upstream; this only reads the forwarded user id.
    """
    if not x_user_id:
        raise HTTPException(status_code=403, detail="Unauthorized")
    return x_user_id


# =============================================================================
# Rate limiting (keyed per caller, one limiter per operation)
# =============================================================================

_conclude_limiter = KeyedRateLimiter(CONCLUDE_RATE_LIMIT_SECONDS)
_brief_limiter = KeyedRateLimiter(BRIEF_RATE_LIMIT_SECONDS)
_improve_limiter = KeyedRateLimiter(IMPROVE_RATE_LIMIT_SECONDS)


def get_conclude_limiter() -> KeyedRateLimiter:
    return _conclude_limiter


def get_brief_limiter() -> KeyedRateLimiter:
    return _brief_limiter


def get_improve_limiter() -> KeyedRateLimiter:
    return _improve_limiter


# =============================================================================
# Object storage
# =============================================================================


def get_image_rehoster() -> ImageRehoster:
    try:
        return ImageRehoster(HttpObjectStore())
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e))
