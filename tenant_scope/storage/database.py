# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Database Connection Management — Async SQLAlchemy 2.0 engine.

The engine pool is sized exactly like the TenantPool in front of it
(no overflow), so every physical connection is accounted for. The
engine is owned by the IsolationContext.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import AsyncAdaptedQueuePool

from tenant_scope.storage.session_settings import install_sqlite_functions


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""
    pass


def build_engine(
    url: str,
    pool_size: int,
    pool_timeout: float = 30.0,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine with a fixed-size pool."""
    kwargs = {
        "pool_size": pool_size,
        "max_overflow": 0,
        "pool_timeout": pool_timeout,
        "echo": echo,
    }
    if url.startswith("sqlite"):
        kwargs["poolclass"] = AsyncAdaptedQueuePool
    else:
        kwargs["pool_pre_ping"] = True
    engine = create_async_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        install_sqlite_functions(engine)
    return engine
