import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from commons import limiter
from configs.config import get_config
from logging_config import setup_logging
from security import RequestIdMiddleware, SecurityHeadersMiddleware
from src.routes import admin_routes, transcription_routes
from src.transcription.worker import JobController

# ── Logging ──────────────────────────────────────────────────────────────────
setup_logging()
logger = logging.getLogger(__name__)

cfg = get_config()


# ── App Factory ──────────────────────────────────────────────────────────────
def create_app(controller: Optional[JobController] = None) -> FastAPI:
    controller = controller or JobController()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(controller.sweep_forever())
        logger.info("Job sweeper started (every %ss)", cfg.JOB_SWEEP_INTERVAL_SECONDS)
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    docs_enabled = getattr(cfg, "DOCS_ENABLED", False)
    app = FastAPI(
        title="Podcast Transcriber API",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── Middleware Stack (order matters – outermost first) ───────────────────

    # 1. Request-ID tracking
    app.add_middleware(RequestIdMiddleware)

    # 2. Security response headers
    app.add_middleware(SecurityHeadersMiddleware)

    # 3. Trusted hosts
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=cfg.ALLOWED_HOSTS)

    # 4. CORS – explicit methods & headers instead of wildcards
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=cfg.CORS_METHODS,
        allow_headers=cfg.CORS_HEADERS,
    )

    app.include_router(transcription_routes.router)
    app.include_router(admin_routes.router)
    return app


app = create_app()


# ═══════════════════════════════════════════════════════════════════════════
#  ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse
    import sys

    import uvicorn

    parser = argparse.ArgumentParser(description="Run Podcast Transcriber")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload on code changes")
    parser.add_argument("--cert-file", default=None, help="Path to SSL certificate file (enables HTTPS)")
    parser.add_argument("--key-file", default=None, help="Path to SSL private key file (required with --cert-file)")

    args = parser.parse_args()

    if bool(args.cert_file) != bool(args.key_file):
        logger.error("Both --cert-file and --key-file must be provided together")
        sys.exit(1)

    protocol = "HTTPS" if args.cert_file else "HTTP"
    logger.info("Starting %s server on %s:%s", protocol, args.host, args.port)

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
        ssl_certfile=args.cert_file,
        ssl_keyfile=args.key_file,
        limit_concurrency=1000,
    )
