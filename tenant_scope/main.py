# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
TenantScope Application Entry Point.

FastAPI app with lifespan, trace and tenant-context middleware, and the
tenant-scoped API routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from tenant_scope.api.documents import router as documents_router
from tenant_scope.api.errors import APIError, api_error_handler, isolation_error_handler
from tenant_scope.api.middleware import TenantContextMiddleware, TraceMiddleware
from tenant_scope.api.observability import router as observability_router
from tenant_scope.api.tenants import router as tenants_router
from tenant_scope.core.config import settings
from tenant_scope.core.context import (
    IsolationContext,
    build_isolation_context,
    init_isolation_context,
    reset_isolation_context,
)
from tenant_scope.core.errors import IsolationError
from tenant_scope.core.logging import setup_logging

logger = logging.getLogger("tenant_scope.main")


def _alert_on_discard(event, context, exc) -> None:
    logger.critical(
        "Isolation alert: %s for tenant %s: %r", event, context.tenant_key, exc,
        extra={"tenant_id": context.tenant_key, "reason": event},
    )


def create_app(context: Optional[IsolationContext] = None) -> FastAPI:
    """Build the FastAPI app; `context` overrides the one built from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage startup/shutdown of isolation resources."""
        # Startup
        setup_logging(settings.LOG_LEVEL)
        ctx = context or build_isolation_context(settings)
        ctx.validate()
        ctx.binder.add_alert_hook(_alert_on_discard)
        if settings.AUTO_CREATE_SCHEMA:
            await ctx.create_schema()
            await ctx.bootstrap()
        init_isolation_context(ctx)
        logger.info(
            "[TenantScope] Ready: %d entity policies, pool size %d",
            len(ctx.catalogue), ctx.pool.size,
        )
        yield
        # Shutdown
        reset_isolation_context()
        await ctx.close()
        logger.info("[TenantScope] Shutdown complete")

    app = FastAPI(
        title="TenantScope",
        description="Tenant context propagation and row isolation",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ── Middleware ───────────────────────────────────────────────
    # added last runs first: trace id is set before the tenant is resolved
    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(TraceMiddleware)

    # ── Error Handlers ──────────────────────────────────────────
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(IsolationError, isolation_error_handler)

    # ── Routes ──────────────────────────────────────────────────
    app.include_router(documents_router, prefix="/api")
    app.include_router(tenants_router, prefix="/api")
    app.include_router(observability_router)

    return app


app = create_app()
