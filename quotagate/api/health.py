"""
Health endpoints for quotagate.

Lightweight probes for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from quotagate.core.database import check_connection, get_engine

logger = logging.getLogger("quotagate")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "plans",
    "features",
    "feature_entitlements",
    "subscriptions",
    "usage_records",
    "billing_admin_audit",
]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    try:
        inspector = inspect(get_engine())
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning(f"[readyz] {detail}")
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok"}
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
