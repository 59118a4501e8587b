# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Test helpers shared by unit and integration tests.
"""

import uuid

from sqlalchemy import event

from tenant_scope.core.config import TenantScopeSettings
from tenant_scope.core.context import IsolationContext
from tenant_scope.core.metrics import Metrics
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.guard import OperationKind
from tenant_scope.storage.database import build_engine
from tenant_scope.storage.pool import BOUND_TENANT_KEY
from tenant_scope.storage.repositories import TenantRepository
from tenant_scope.storage.session_settings import SQLITE_SETTINGS_KEY


def make_settings(**overrides) -> TenantScopeSettings:
    values = {"DB_POOL_SIZE": 2, "DB_POOL_TIMEOUT": 2.0}
    values.update(overrides)
    return TenantScopeSettings(_env_file=None, **values)


async def build_context(tmp_path, pool_size: int = 2, **overrides) -> IsolationContext:
    """IsolationContext over a fresh SQLite file, schema created and bootstrapped."""
    config = make_settings(DB_POOL_SIZE=pool_size, **overrides)
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path}/tenant_scope.db",
        pool_size=pool_size,
        pool_timeout=config.DB_POOL_TIMEOUT,
    )
    ctx = IsolationContext(engine, config, metrics=Metrics())
    await ctx.create_schema()
    await ctx.bootstrap()
    return ctx


async def provision(ctx: IsolationContext, *names: str) -> list:
    """Register tenants and return a TenantContext for each."""
    contexts = [TenantContext(tenant_id=uuid.uuid4(), subject=f"user-{n}") for n in names]

    async def _provision(bound):
        repo = TenantRepository(bound)
        for name, tenant in zip(names, contexts):
            await repo.provision(tenant.tenant_key, name)

    await ctx.binder.with_tenant_transaction(
        TenantContext.system("tests"), _provision, operation=OperationKind.SYSTEM,
    )
    return contexts


class StatementSpy:
    """
    Records every statement sent on an engine together with the session
    setting at that moment (what a row policy would compare against) and
    the tenant the binder marked the connection with.
    """

    def __init__(self, engine, key: str):
        self.key = key
        self.calls = []
        self._engine = engine.sync_engine
        event.listen(self._engine, "before_cursor_execute", self._record)

    def _record(self, conn, cursor, statement, parameters, context, executemany):
        store = conn.info.get(SQLITE_SETTINGS_KEY, {})
        self.calls.append((statement, store.get(self.key), conn.info.get(BOUND_TENANT_KEY)))

    def data_statements(self):
        """Calls other than the reads and writes of the setting itself."""
        return [
            call for call in self.calls
            if not call[0].lstrip().upper().startswith(("SELECT SET_CONFIG", "SELECT CURRENT_SETTING"))
        ]

    def close(self):
        event.remove(self._engine, "before_cursor_execute", self._record)
