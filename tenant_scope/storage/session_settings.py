# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Session Setting — The per-connection tenant annotation.

Row-level policies compare each row's tenant_id against
current_setting(<key>, true). Only the ConnectionBinder writes it, always
through an explicit SessionSetting instance.

PostgreSQL provides set_config/current_setting natively. For SQLite
development databases the same two functions are registered per DBAPI
connection so the identical SQL and predicates run everywhere.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.sql.elements import ColumnElement

from tenant_scope.core.tenant import SENTINEL_TENANT_ID

logger = logging.getLogger("tenant_scope.session_setting")

# connection_record.info key holding the emulated settings of a SQLite connection
SQLITE_SETTINGS_KEY = "tenant_scope.sqlite_settings"


class SessionSetting:
    """Reads and writes the tenant session setting on one connection."""

    def __init__(self, key: str, reset_value: str = str(SENTINEL_TENANT_ID)) -> None:
        if not key or "." not in key:
            raise ValueError(f"setting key must be a dotted custom name, got {key!r}")
        self.key = key
        self.reset_value = reset_value

    def current(self) -> ColumnElement:
        """SQL expression for the value policies compare against."""
        return func.current_setting(self.key, True)

    async def apply(self, conn: AsyncConnection, tenant_key: str) -> None:
        """Set the annotation for the current transaction only."""
        await conn.execute(select(func.set_config(self.key, tenant_key, True)))

    async def reset(self, conn: AsyncConnection) -> None:
        """Return the session to the sentinel value and end the reset transaction."""
        await conn.execute(select(func.set_config(self.key, self.reset_value, False)))
        await conn.commit()

    async def read(self, conn: AsyncConnection) -> Optional[str]:
        result = await conn.execute(select(self.current()))
        return result.scalar()

    def is_clean(self, value: Optional[str]) -> bool:
        return value in (None, "", self.reset_value)


def install_sqlite_functions(engine: AsyncEngine) -> None:
    """Register set_config/current_setting on every new SQLite connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _register(dbapi_connection: Any, connection_record: Any) -> None:
        store: Dict[str, str] = {}
        connection_record.info[SQLITE_SETTINGS_KEY] = store

        def set_config(name: str, value: str, is_local: Any) -> str:
            store[name] = value
            return value

        def current_setting(name: str, missing_ok: Any) -> Optional[str]:
            return store.get(name)

        dbapi_connection.create_function("set_config", 3, set_config)
        dbapi_connection.create_function("current_setting", 2, current_setting)
        logger.debug("Registered session setting functions on SQLite connection")
