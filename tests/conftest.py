# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Shared test fixtures for all TenantScope tests.

Unit tests run against a temporary SQLite file; set_config and
current_setting are registered on each connection so the same
predicates run as on PostgreSQL.
"""

import pytest

from tenant_scope.core.context import init_isolation_context, reset_isolation_context
from tenant_scope.core.tenant import TenantContext

from tests.support import build_context, provision


@pytest.fixture
async def iso(tmp_path):
    """Initialized IsolationContext (pool size 2) registered as the global."""
    ctx = await build_context(tmp_path)
    init_isolation_context(ctx)
    yield ctx
    reset_isolation_context()
    await ctx.close()


@pytest.fixture
async def tenants(iso):
    """Two provisioned tenants: A and B."""
    return await provision(iso, "tenant-a", "tenant-b")


@pytest.fixture
def tenant_a(tenants) -> TenantContext:
    return tenants[0]


@pytest.fixture
def tenant_b(tenants) -> TenantContext:
    return tenants[1]
