# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Isolation Context — Singleton that holds all core component references.

Initialized at startup, injected into API routes via FastAPI Depends.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from tenant_scope.core.config import TenantScopeSettings, settings as default_settings
from tenant_scope.core.metrics import Metrics, isolation_metrics
from tenant_scope.core.propagation import ContextPropagator
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.binder import ConnectionBinder
from tenant_scope.isolation.catalogue import PolicyCatalogue, load_default_catalogue
from tenant_scope.isolation.guard import IsolationGuard, OperationKind
from tenant_scope.storage.database import Base, build_engine
from tenant_scope.storage.pool import TenantPool
from tenant_scope.storage.repositories import TenantRepository
from tenant_scope.storage.session_settings import SessionSetting

logger = logging.getLogger("tenant_scope.context")


def _engine_pool_size(engine: AsyncEngine, fallback: int) -> int:
    size = getattr(engine.sync_engine.pool, "size", None)
    return int(size()) if callable(size) else fallback


class IsolationContext:
    """
    Holds all runtime references for the isolation layer.
    Created once at startup, used by all API handlers.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        config: Optional[TenantScopeSettings] = None,
        catalogue: Optional[PolicyCatalogue] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.settings = config or default_settings
        self.metrics = metrics or isolation_metrics
        self.setting = SessionSetting(self.settings.TENANT_SETTING_KEY)
        self.catalogue = catalogue or load_default_catalogue(
            self.setting, self.settings.POLICY_CATALOGUE_PATH
        )
        self.propagator = ContextPropagator(self.settings)
        self.guard = IsolationGuard(
            self.catalogue,
            max_context_age_seconds=self.settings.CONTEXT_MAX_AGE_SECONDS,
            metrics=self.metrics,
        )
        self.pool = TenantPool(
            engine,
            self.setting,
            size=_engine_pool_size(engine, self.settings.DB_POOL_SIZE),
            timeout=self.settings.DB_POOL_TIMEOUT,
            verify_on_checkout=self.settings.VERIFY_CLEAN_ON_CHECKOUT,
            metrics=self.metrics,
        )
        self.binder = ConnectionBinder(self.pool, self.setting, self.guard, metrics=self.metrics)

    @property
    def engine(self) -> AsyncEngine:
        return self.pool.engine

    def validate(self) -> None:
        """Fail fast if any tenant-scoped table lacks a policy."""
        self.catalogue.validate(Base.metadata)

    async def create_schema(self) -> None:
        """Create tables; on PostgreSQL the row policies are created with them."""
        self.catalogue.install(Base.metadata)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def bootstrap(self) -> None:
        """Create the sentinel tenant row under an explicit system context."""
        async def _bootstrap(bound):
            await TenantRepository(bound).bootstrap_sentinel()

        await self.binder.with_tenant_transaction(
            TenantContext.system(subject="bootstrap"),
            _bootstrap,
            operation=OperationKind.SYSTEM,
        )
        logger.info("Sentinel tenant bootstrapped")

    async def close(self) -> None:
        await self.pool.dispose()


# ── Global singleton ────────────────────────────────────────

_ctx: Optional[IsolationContext] = None


def build_isolation_context(
    config: Optional[TenantScopeSettings] = None,
    engine: Optional[AsyncEngine] = None,
) -> IsolationContext:
    config = config or default_settings
    engine = engine or build_engine(
        config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        pool_timeout=config.DB_POOL_TIMEOUT,
        echo=config.DB_ECHO,
    )
    return IsolationContext(engine, config)


def init_isolation_context(ctx: IsolationContext) -> IsolationContext:
    global _ctx
    _ctx = ctx
    return _ctx


def get_isolation_context() -> IsolationContext:
    if _ctx is None:
        raise RuntimeError("IsolationContext not initialized. Call init_isolation_context() first.")
    return _ctx


def reset_isolation_context() -> None:
    global _ctx
    _ctx = None
