"""
raindrop-mfa REST API - Main Application.

FastAPI application that puts the Hydro Raindrop MFA gate in front of a
host application's login.

Usage:
    # Development
    uvicorn raindrop_mfa.api.main:app --reload --port 8000

    # Production
    uvicorn raindrop_mfa.api.main:app --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.exceptions import RequestValidationError

from .. import __version__
from ..auth.errors import AccountBlocked, IdentityServiceError
from ..auth.flash import FlashStore
from ..auth.host import HostSessions, UserDirectory
from ..auth.identity_client import IdentityClient, UnconfiguredIdentityClient
from ..database.kv_store import KeyValueStore, build_store
from ..utils.config import Settings, describe_client_options, get_settings, has_valid_client_options
from .deps import (
    GateServices,
    apply_decision,
    build_request_context,
    get_redis_client,
    get_state_machine,
)
from .routes import auth_router, health_router, mfa_router

# Configure logging with request context support
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)

# Custom filter to add request_id to all log records
class RequestIdFilter(logging.Filter):
    """Add request_id to log records."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

# API metadata
API_TITLE = "raindrop-mfa"
API_DESCRIPTION = """
**Hydro Raindrop multi-factor authentication gate**

Adds a second factor to a host application's password login:

1. Login: `POST /auth/login`
2. First time: register a HydroID on `/mfa/setup`
3. Confirm the six-digit message in the Hydro app on `/mfa/verify`

Setup and verify forms are processed only over HTTPS and carry an
anti-forgery `_nonce` field.
"""
API_VERSION = os.getenv("APP_VERSION", __version__)

# Paths the MFA gate never intercepts
GATE_EXEMPT_PREFIXES = ("/health", "/docs", "/redoc", "/openapi.json")

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown.
    """
    # Startup
    logger.info(f"Starting raindrop-mfa API v{API_VERSION}")

    services: GateServices = app.state.services
    if isinstance(services.identity_client, UnconfiguredIdentityClient):
        logger.warning(
            "Hydro Raindrop MFA is not properly configured; MFA pages will fail closed "
            f"({describe_client_options(services.settings)})"
        )

    yield

    # Shutdown
    logger.info("Shutting down raindrop-mfa API")


def _resolve_identity_client(settings: Settings, identity_client: Optional[IdentityClient]) -> IdentityClient:
    if identity_client is not None:
        return identity_client
    if not has_valid_client_options(settings):
        return UnconfiguredIdentityClient("identity service credentials are missing")
    return UnconfiguredIdentityClient("no identity service client was provided")


def _is_exempt(path: str) -> bool:
    return any(path == prefix or path.startswith(prefix + "/") for prefix in GATE_EXEMPT_PREFIXES)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KeyValueStore] = None,
    identity_client: Optional[IdentityClient] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Process settings; read from the environment if omitted.
        store: Key-value store; built from settings if omitted.
        identity_client: Identity-service client. Without one every MFA
            operation fails closed with 503.

    Returns:
        Configured FastAPI instance.
    """
    settings = settings or get_settings()
    if store is None:
        store = build_store(settings, get_redis_client(settings))

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.services = GateServices(
        settings=settings,
        store=store,
        identity_client=_resolve_identity_client(settings, identity_client),
        users=UserDirectory(store),
        host_sessions=HostSessions(store),
        flashes=FlashStore(store),
    )

    # MFA gate: runs the per-request hook before any route
    @app.middleware("http")
    async def mfa_gate(request: Request, call_next):
        if _is_exempt(request.url.path):
            return await call_next(request)

        form = {}
        content_type = request.headers.get("content-type", "")
        if request.method == "POST" and content_type.startswith(FORM_CONTENT_TYPES):
            # Read the body first so it is replayed to the route
            await request.body()
            form_data = await request.form()
            form = {key: value for key, value in form_data.items() if isinstance(value, str)}

        ctx = build_request_context(request, form)
        request.state.mfa_context = ctx

        machine = get_state_machine(request)
        decision = machine.verify(ctx)
        request.state.mfa_decision = decision

        if decision.redirect:
            response = RedirectResponse(decision.redirect, status_code=status.HTTP_303_SEE_OTHER)
        else:
            response = await call_next(request)

        apply_decision(request, response, decision)
        return response

    # Request tracking and security headers middleware
    @app.middleware("http")
    async def add_request_tracking_and_security(request: Request, call_next):
        # Generate or extract request ID for tracing
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])

        # Store in request state for access in route handlers
        request.state.request_id = request_id

        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"[{request_id}] Request failed: {e}", exc_info=True)
            raise

        process_time = (time.time() - start_time) * 1000

        # Request tracking headers
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"

        # Log request completion (skip health checks to reduce noise)
        if not request.url.path.startswith("/health"):
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} "
                f"-> {response.status_code} ({process_time:.1f}ms)"
            )

        # Security headers
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = " -> ".join(str(l) for l in error["loc"])
            errors.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "detail": "; ".join(errors),
                "code": "VALIDATION_ERROR",
            },
        )

    @app.exception_handler(AccountBlocked)
    async def account_blocked_handler(request: Request, exc: AccountBlocked):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={
                "error": "Forbidden",
                "detail": str(exc),
                "code": "ACCOUNT_BLOCKED",
            },
        )

    @app.exception_handler(IdentityServiceError)
    async def identity_service_handler(request: Request, exc: IdentityServiceError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"[{request_id}] Identity service error: {exc}")

        # Only administrators get to see what went wrong
        ctx = getattr(request.state, "mfa_context", None)
        detail = str(exc) if ctx is not None and ctx.is_admin else exc.public_message

        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": "Service Unavailable",
                "detail": detail,
                "code": "MFA_NOT_CONFIGURED",
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "request_id": request_id,
                "detail": str(exc) if os.getenv("APP_ENV") == "development" else None,
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(mfa_router)

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": API_TITLE,
            "version": API_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "raindrop_mfa.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
