"""
Health check endpoints.
Used for monitoring, deployment readiness checks, and basic connectivity tests.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request

from safegrid.config.firebase import get_db
from safegrid.core.settings import settings


router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
async def health_check(request: Request):
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    registry = getattr(request.app.state, "registry", None)
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "connections": len(registry.all_connections()) if registry is not None else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/db")
async def database_health():
    """
    Database connectivity check.
    Lists Firestore collections as a lightweight round trip.
    """
    try:
        db = get_db()
        collections = list(db.collections())

        return {
            "status": "healthy",
            "database": "firestore",
            "connected": True,
            "collections_count": len(collections),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(e)}"
        )
