"""
Admin / cleanup API routes.

All endpoints require a valid ``X-Admin-Key`` header.

Endpoints:
    GET    /api/admin/jobs          - list jobs, optionally by state
    POST   /api/admin/jobs/cleanup  - evict expired jobs now
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from commons import limiter
from security import require_admin_key, safe_error_response
from src.routes.transcription_routes import get_controller

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/jobs")
@limiter.limit("60/minute")
def list_jobs(
    request: Request, state: Optional[str] = None, _=Depends(require_admin_key)
) -> dict:
    """List job summaries, newest first."""
    jobs = get_controller(request).jobs.get_all_jobs(state=state)
    return {"jobs": [job.summary() for job in jobs], "total": len(jobs)}


@router.post("/jobs/cleanup")
@limiter.limit("5/minute")
def cleanup_expired_jobs(request: Request, _=Depends(require_admin_key)) -> dict:
    """Run an eviction sweep immediately."""
    try:
        evicted = get_controller(request).evict_expired()
    except Exception as exc:
        safe_error_response(exc, context="cleanup_expired_jobs")
    logger.info("Admin cleanup evicted %d jobs", len(evicted))
    return {
        "success": True,
        "message": f"Removed {len(evicted)} expired jobs",
        "evicted": evicted,
    }
