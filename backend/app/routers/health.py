"""Health-check router."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text

from app import database
from app.deps import get_directory, get_document_storage
from app.services.directory import HttpDirectoryClient

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check"""
    return {"status": "ok", "message": "SSC Review API is running"}


@router.get("/api/v1/health")
async def health_check():
    """Detailed health check with collaborator availability."""
    capabilities = []
    degraded = []

    db_status = "not_configured"
    if database.async_session_factory is not None:
        try:
            async with database.async_session_factory() as session:
                await session.execute(text("SELECT 1"))
            db_status = "connected"
        except Exception as e:
            logger.warning("Health check database query failed: %s", e)
            db_status = "unavailable"
    if db_status == "connected":
        capabilities.append("ssc_review")
    else:
        degraded.append("ssc_review")

    if isinstance(get_directory(), HttpDirectoryClient):
        capabilities.append("directory_enrichment")
    else:
        degraded.append("directory_enrichment")

    if get_document_storage().configured:
        capabilities.append("document_links")
    else:
        degraded.append("document_links")

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {"database": db_status},
        "capabilities": capabilities,
        "degraded": degraded if degraded else None,
        "mode": "full" if not degraded else "degraded",
    }
