# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
API Middleware — Trace ID propagation and tenant context resolution.

Upstream authentication places the verified claims on request.state.claims;
TenantContextMiddleware turns them into the request's TenantContext.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tenant_scope.api.errors import isolation_error_response
from tenant_scope.core.context import get_isolation_context
from tenant_scope.core.errors import IsolationError
from tenant_scope.core.logging import trace_id_var
from tenant_scope.core.propagation import tenant_scope

logger = logging.getLogger("tenant_scope.api")


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Generates or propagates X-Trace-Id header for every request.
    Also logs request duration.
    """

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id", str(uuid.uuid4()))
        request.state.trace_id = trace_id
        token = trace_id_var.set(trace_id)

        start = time.time()
        try:
            response: Response = await call_next(request)
        finally:
            trace_id_var.reset(token)
        elapsed = (time.time() - start) * 1000

        response.headers["X-Trace-Id"] = trace_id
        logger.info(
            "[api] %s %s → %d (%.0fms) trace=%s",
            request.method, request.url.path,
            response.status_code, elapsed, trace_id,
        )
        return response


class TenantContextMiddleware(BaseHTTPMiddleware):
    """
    Resolves verified claims into a TenantContext for the request's task.

    Requests that cannot be resolved never reach a handler, so no database
    work is attempted for them.
    """

    def __init__(self, app, exempt_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        propagator = get_isolation_context().propagator
        claims = getattr(request.state, "claims", None)
        try:
            ctx = propagator.resolve(claims)
        except IsolationError as exc:
            logger.info(
                "[api] %s %s rejected: %s", request.method, request.url.path, exc.code,
            )
            return isolation_error_response(exc, getattr(request.state, "trace_id", None))

        request.state.tenant = ctx
        with tenant_scope(ctx):
            return await call_next(request)
