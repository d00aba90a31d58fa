# api/server.py
# ============================================================================
# CLUBSPHERE: FASTAPI SERVER
# ============================================================================
# App factory with CORS, request context logging, domain error mapping,
# health check and the background reconciliation loop.
# ============================================================================

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api import admin, catalog, join, members, webhooks
from config import server_config
from database import build_store
from errors import ClubSphereError
from payments.gateway import PaymentGateway, StripePaymentGateway
from storage.document_store import DocumentStore
from tasks.reconciliation import reconciliation_loop

VERSION = "1.0.0"

logger = structlog.get_logger().bind(component="server")


# ============================================================================
# LOGGING
# ============================================================================

def configure_logging(env: Optional[str] = None) -> None:
    """JSON lines in production, readable console output in development"""
    env = env or server_config.ENV
    renderer = (
        structlog.dev.ConsoleRenderer()
        if env == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if server_config.DEBUG else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    store: str
    store_ok: bool
    uptime_seconds: float


# ============================================================================
# APP FACTORY
# ============================================================================

def create_app(
    store: Optional[DocumentStore] = None,
    gateway: Optional[PaymentGateway] = None,
    webhook_secret: Optional[str] = None,
) -> FastAPI:
    """
    Build the API.

    Handles passed in are used as-is (tests); anything missing is built from
    configuration when the lifespan starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        logger.info("server_starting", env=server_config.ENV, version=VERSION)

        if app.state.store is None:
            app.state.store = build_store()
        await app.state.store.initialize()
        if app.state.gateway is None:
            app.state.gateway = StripePaymentGateway()

        reconciler = asyncio.create_task(reconciliation_loop(app.state.store))

        yield

        logger.info("server_stopping")
        reconciler.cancel()
        with suppress(asyncio.CancelledError):
            await reconciler
        await app.state.store.close()

    app = FastAPI(
        title="ClubSphere API",
        description="Club memberships, event registrations and payments",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.gateway = gateway
    app.state.webhook_secret = webhook_secret
    app.state.started_at = datetime.now(timezone.utc)

    # CORS: the session cookie requires explicit origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=server_config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------------

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        """Bind a request id into every log line and time the response."""
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = f"{duration:.2f}"
        logger.info("request_completed", status=response.status_code, duration_ms=round(duration, 2))
        return response

    # ------------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------------

    @app.exception_handler(ClubSphereError)
    async def domain_error(request: Request, exc: ClubSphereError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("request_failed", code=exc.code, status=exc.status_code, detail=exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.detail},
        )

    # ------------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Liveness plus a store ping."""
        current = request.app.state.store
        store_ok = False
        if current is not None:
            try:
                store_ok = await current.ping()
            except ClubSphereError:
                store_ok = False

        uptime = (datetime.now(timezone.utc) - request.app.state.started_at).total_seconds()
        return HealthResponse(
            status="healthy" if store_ok else "degraded",
            version=VERSION,
            store=current.backend if current is not None else "none",
            store_ok=store_ok,
            uptime_seconds=uptime,
        )

    app.include_router(catalog.router)
    app.include_router(join.router)
    app.include_router(members.router)
    app.include_router(admin.router)
    app.include_router(webhooks.router)

    return app


app = create_app()


# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "api.server:app",
        host=server_config.HOST,
        port=server_config.PORT,
        reload=server_config.ENV == "development",
        log_level="info",
    )
