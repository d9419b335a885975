"""
Health and diagnostics API for the Sovrn marketplace backend.

Provides lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import inspect

from sovrn.core.database import check_connection, get_engine
from sovrn.core.logging import latency_bucket_ms, get_request_id

logger = logging.getLogger("sovrn")

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "purchases",
    "transactions",
    "dataset_sales",
    "dataset_contributions",
    "revenue_allocations",
    "revenue_shares",
    "user_balances",
]


class DBHealth(BaseModel):
    """Database health status."""
    connected: bool
    latency_ms: Optional[float] = None  # Can be None for determinism in tests
    missing_tables: list[str] = []


class HealthResponse(BaseModel):
    """Health check response."""
    ok: bool
    db: DBHealth
    computed_at: str  # UTC ISO format


def _missing_tables() -> list[str]:
    inspector = inspect(get_engine())
    return [t for t in REQUIRED_TABLES if not inspector.has_table(t)]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        if not check_connection():
            return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

        missing = _missing_tables()
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok"}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})


@router.get("/db", response_model=HealthResponse)
def health_db(now: Optional[str] = Query(None)):
    """
    Check database health and connectivity.

    Args:
        now: Optional ISO timestamp for deterministic testing (overrides system time)
    """
    start = time.perf_counter()
    is_connected = check_connection()
    latency_ms = (time.perf_counter() - start) * 1000

    db_health = DBHealth(
        connected=is_connected,
        latency_ms=None if now else latency_ms,
    )
    if is_connected:
        try:
            db_health.missing_tables = _missing_tables()
        except Exception as e:
            logger.warning(f"[health] Failed to inspect tables: {e}")

    logger.info(
        "health.db",
        extra={
            "request_id": get_request_id(),
            "latency_bucket": latency_bucket_ms(latency_ms if now is None else None),
        },
    )

    return HealthResponse(
        ok=is_connected and not db_health.missing_tables,
        db=db_health,
        computed_at=now or datetime.now(timezone.utc).isoformat(),
    )
