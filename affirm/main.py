"""
Affirm API - Main Application
=============================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from affirm.config import settings
from affirm.db.session import init_db, close_db
from affirm.services.avatar_storage import close_storage_service, get_storage_service
from affirm.services.cache import init_redis, close_redis
from affirm.core.errors import setup_exception_handlers


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that enriches every New Relic transaction with
    custom attributes for filtering and alerting.

    Raw ASGI rather than BaseHTTPMiddleware: ``call_next()`` runs the route
    in a separate task, which breaks New Relic's contextvars-based span
    propagation.

    Captures: response status, latency, HTTP method, route pattern, and
    user ID (when authenticated).
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # until the real one is captured

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            txn = newrelic.agent.current_transaction()
            if txn:
                # Route pattern (e.g. "/api/v1/subscription/activate") for grouping
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round(duration_ms, 2)),
                    ("environment", settings.ENVIRONMENT),
                ])

                # Set by the auth dependency
                state = scope.get("state")
                user_id = state.get("user_id") if isinstance(state, dict) else getattr(state, "user_id", None)
                if user_id:
                    newrelic.agent.add_custom_attribute("enduser.id", str(user_id))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events for:
    - Database connection
    - Redis connection
    - Blob storage client
    """
    # Startup
    print("🚀 Starting Affirm API...")

    # Warn if auth is disabled
    if settings.auth_disabled:
        print("⚠️  WARNING: Authentication is DISABLED (DEV_AUTH_DISABLED=true)")
        print(f"⚠️  All requests will use the development user '{settings.DEV_USER_ID}'.")
        print("⚠️  DO NOT use this setting in production!")

    if not settings.REVENUECAT_WEBHOOK_AUTH:
        print("⚠️  REVENUECAT_WEBHOOK_AUTH is not set; webhook authentication is skipped")

    # Initialize database
    try:
        await init_db()
    except Exception as e:
        print(f"⚠️ Database connection failed: {e}")
        # Continue startup even if DB fails (for health checks)

    # Initialize Redis
    try:
        await init_redis()
    except Exception as e:
        print(f"⚠️ Redis connection failed: {e}")

    # Blob storage client
    storage = get_storage_service()
    if not storage.configured:
        print("⚠️ Azure Storage not configured; avatar uploads will fail")

    yield

    # Shutdown
    print("🛑 Shutting down Affirm API...")
    close_storage_service()
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="Affirm API",
    description="""
## Affirm Mobile App Backend

### Features
- **Profiles**: profile read/upsert and avatar upload
- **Cloud Affirmations**: metadata sync for the mobile app
- **Subscription**: RevenueCat webhook reconciliation and entitlement state
- **Billing**: payment history
- **Account**: account deletion

### File Limits
- Avatars: Max 5MB (PNG, JPEG, WEBP)
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        400: {"description": "Bad request"},
        401: {"description": "Not authenticated"},
        404: {"description": "Resource not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
        503: {"description": "Upstream service unavailable"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# New Relic transaction enrichment (adds custom attrs to every transaction)
app.add_middleware(NewRelicTransactionMiddleware)

# Setup exception handlers
setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns the current status of the API.
    """
    return {
        "status": "healthy",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Affirm API",
        "version": "1.0.0",
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

from affirm.api.v1 import profiles, me
app.include_router(profiles.router, prefix="/api/v1/profiles", tags=["Profile"])
app.include_router(me.router, prefix="/api/v1/me", tags=["Profile"])

from affirm.api.v1 import affirmations
app.include_router(affirmations.router, prefix="/api/v1/cloud/affirms", tags=["Affirmations"])

from affirm.api.v1 import subscription, webhooks, billing
app.include_router(subscription.router, prefix="/api/v1/subscription", tags=["Subscription"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])
app.include_router(billing.router, prefix="/api/v1/billing", tags=["Billing"])

from affirm.api.v1 import account
app.include_router(account.router, prefix="/api/v1/account", tags=["Account"])
