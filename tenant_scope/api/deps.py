# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from fastapi import Depends, Request

from tenant_scope.core.context import IsolationContext, get_isolation_context
from tenant_scope.core.errors import MissingTenant
from tenant_scope.core.propagation import current_tenant
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.binder import ConnectionBinder
from tenant_scope.isolation.guard import OperationKind


async def get_isolation() -> IsolationContext:
    return get_isolation_context()


async def get_binder(iso: IsolationContext = Depends(get_isolation)) -> ConnectionBinder:
    return iso.binder


async def get_current_tenant(request: Request) -> TenantContext:
    """
    The TenantContext resolved by TenantContextMiddleware.

    Fails closed when the middleware did not run for this route.
    """
    ctx = current_tenant() or getattr(request.state, "tenant", None)
    if ctx is None:
        raise MissingTenant("No tenant context resolved for this request")
    return ctx


async def get_system_context(
    tenant: TenantContext = Depends(get_current_tenant),
    iso: IsolationContext = Depends(get_isolation),
) -> TenantContext:
    """Only verified system callers pass."""
    return iso.guard.authorize(tenant, OperationKind.SYSTEM)
