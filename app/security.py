"""
Security utilities for the FastAPI application.
Provides middlewares, validators, and helpers for hardening the server.
"""

import re
import secrets
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from fastapi import HTTPException

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()

# --------------- Input Validation Patterns ---------------

JOB_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
URL_SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
# Caller-supplied request ids are echoed into logs and headers
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

API_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-site",
}
# The API only serves JSON and event streams; the docs UI needs CDN assets
API_CSP = "default-src 'none'; frame-ancestors 'none'"


# --------------- Middlewares ---------------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add hardening headers to every API response."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in API_SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if not getattr(cfg, "DOCS_ENABLED", False):
            response.headers.setdefault("Content-Security-Policy", API_CSP)
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=63072000; includeSubDomains"
            )
        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate a well-formed X-Request-ID, or mint one."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", "")
        if not REQUEST_ID_PATTERN.match(request_id):
            request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.debug(
            "%s %s -> %d [%s]",
            request.method, request.url.path, response.status_code, request_id,
        )
        return response


# --------------- Validators ---------------


def validate_job_id(job_id: str) -> str:
    """Validate and return a safe job_id, or raise 400."""
    if not JOB_ID_PATTERN.match(job_id):
        logger.warning("Rejected invalid job_id: %r", job_id)
        raise HTTPException(status_code=400, detail="Invalid job ID format")
    return job_id


def validate_source_url(url: str) -> str:
    """Only plain http(s) URLs may be fetched on a caller's behalf."""
    if not URL_SCHEME_PATTERN.match(url):
        raise ValueError("URL must start with http:// or https://")
    return url


# --------------- Error Helpers ---------------


def safe_error_response(
    exc: Exception, context: str = "operation", status_code: int = 500
):
    """
    Log the real exception but return a sanitized message to the client.
    In development mode, the real error is included for debugging.
    """
    logger.error("Error in %s: %s", context, exc, exc_info=True)
    if cfg.ENVIRONMENT == "development":
        detail = f"[DEV] {context}: {exc}"
    else:
        detail = (
            f"An internal error occurred during {context}. "
            "Please try again later."
        )
    raise HTTPException(status_code=status_code, detail=detail)


# --------------- Admin Auth ---------------


def require_admin_key(request: Request):
    """
    Dependency that checks for a valid X-Admin-Key header.
    Raises 403 if missing or incorrect.
    """
    provided_key = request.headers.get("X-Admin-Key", "")
    if not provided_key or not secrets.compare_digest(
        provided_key, cfg.ADMIN_API_KEY
    ):
        logger.warning(
            "Unauthorized admin access attempt from %s",
            request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=403, detail="Forbidden: invalid admin key"
        )
