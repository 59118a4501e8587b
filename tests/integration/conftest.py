# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Integration test fixtures — Real PostgreSQL with row-level security.

These tests require a running PostgreSQL reachable through
TENANT_SCOPE_PG_URL (postgresql+asyncpg://...). They are skipped otherwise.

The application engine switches to a non-owner role on connect so the
row policies apply even when the test login is a superuser.
"""

import os

import pytest
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine

from tenant_scope.core.context import IsolationContext
from tenant_scope.core.metrics import Metrics
from tenant_scope.storage.database import Base, build_engine

from tests.support import make_settings

PG_URL = os.getenv("TENANT_SCOPE_PG_URL")
APP_ROLE = "tenant_scope_app"

# Import models so tables are registered
import tenant_scope.storage.models  # noqa


@pytest.fixture
async def pg_iso():
    """IsolationContext on real PostgreSQL; tables and policies dropped after test."""
    if not PG_URL:
        pytest.skip("TENANT_SCOPE_PG_URL not set")

    admin = create_async_engine(PG_URL)
    async with admin.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.execute(text(
            f"DO $$ BEGIN "
            f"IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{APP_ROLE}') "
            f"THEN CREATE ROLE {APP_ROLE} NOLOGIN; END IF; END $$"
        ))

    config = make_settings(DATABASE_URL=PG_URL, DB_POOL_SIZE=2)
    engine = build_engine(PG_URL, pool_size=2, pool_timeout=config.DB_POOL_TIMEOUT)
    ctx = IsolationContext(engine, config, metrics=Metrics())

    # schema is created by the owner; policies attach on create
    ctx.catalogue.install(Base.metadata)
    async with admin.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(f"GRANT USAGE ON SCHEMA public TO {APP_ROLE}"))
        await conn.execute(text(
            f"GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO {APP_ROLE}"
        ))

    @event.listens_for(engine.sync_engine, "connect")
    def _set_role(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"SET ROLE {APP_ROLE}")
        cursor.close()

    await ctx.bootstrap()
    yield ctx

    await ctx.close()
    async with admin.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await admin.dispose()
