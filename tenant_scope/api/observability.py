# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Observability API — Health check and isolation metrics.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tenant_scope.api.deps import get_isolation, get_system_context
from tenant_scope.core.context import IsolationContext
from tenant_scope.core.tenant import TenantContext

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check(iso: IsolationContext = Depends(get_isolation)):
    """Health check with pool status. Needs no tenant."""
    pool = iso.pool.stats()
    return {
        "status": "degraded" if pool["quarantined"] else "ok",
        "version": "0.1.0",
        "database": iso.engine.dialect.name,
        "pool": pool,
    }


@router.get("/api/metrics")
async def get_metrics(
    system: TenantContext = Depends(get_system_context),
    iso: IsolationContext = Depends(get_isolation),
):
    """Return isolation-layer metrics (system callers only)."""
    snapshot = iso.metrics.snapshot()
    snapshot["pool"] = iso.pool.stats()
    snapshot["engine_pool"] = iso.pool.engine_stats()
    return snapshot
