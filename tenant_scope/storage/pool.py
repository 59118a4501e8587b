# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Tenant Pool — Bounded, hygiene-checked access to pooled connections.

Invariants:
  - A connection is owned by exactly one unit of work between checkout
    and checkin.
  - A connection whose tenant annotation was not reset is never checked
    in; it is discarded and its slot quarantined.
  - A quarantined slot stays out of circulation until an operator calls
    replenish(), so `available` drops by one per discard.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tenant_scope.core.errors import BindError, PoolTimeout
from tenant_scope.core.metrics import Metrics, isolation_metrics
from tenant_scope.storage.session_settings import SessionSetting

logger = logging.getLogger("tenant_scope.pool")

# connection.info key holding the tenant a connection is currently bound to
BOUND_TENANT_KEY = "tenant_scope.bound_tenant"


class TenantPool:
    """Front door to the engine's connection pool."""

    def __init__(
        self,
        engine: AsyncEngine,
        setting: SessionSetting,
        size: int,
        timeout: float = 30.0,
        verify_on_checkout: bool = True,
        metrics: Optional[Metrics] = None,
    ) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._engine = engine
        self._setting = setting
        self._size = size
        self._timeout = timeout
        self._verify = verify_on_checkout
        self._metrics = metrics or isolation_metrics
        self._slots = asyncio.Semaphore(size)
        self._checked_out = 0
        self._quarantined = 0
        self._discarded_total = 0

    # ── Accounting ─────────────────────────────────────────────

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def size(self) -> int:
        """Configured number of slots."""
        return self._size

    @property
    def capacity(self) -> int:
        """Slots still in circulation (size minus quarantined)."""
        return self._size - self._quarantined

    @property
    def available(self) -> int:
        return self.capacity - self._checked_out

    @property
    def checked_out(self) -> int:
        return self._checked_out

    @property
    def discarded(self) -> int:
        return self._discarded_total

    def stats(self) -> Dict[str, int]:
        return {
            "size": self._size,
            "capacity": self.capacity,
            "available": self.available,
            "checked_out": self._checked_out,
            "quarantined": self._quarantined,
            "discarded_total": self._discarded_total,
        }

    def _publish(self) -> None:
        self._metrics.set_gauge("pool.available", self.available)
        self._metrics.set_gauge("pool.capacity", self.capacity)

    # ── Checkout / Checkin ─────────────────────────────────────

    async def checkout(self) -> AsyncConnection:
        """
        Wait for a free slot and hand out a clean connection.

        Raises PoolTimeout when no slot frees up in time and BindError
        when the connection handed back by the engine is not clean.
        """
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._metrics.inc("pool.timeout")
            raise PoolTimeout(
                f"No pooled connection became free within {self._timeout}s",
                details=self.stats(),
            ) from None

        try:
            conn = await self._engine.connect()
        except BaseException:
            self._slots.release()
            raise

        self._checked_out += 1
        self._publish()
        try:
            await self._ensure_clean(conn)
        except asyncio.CancelledError:
            await asyncio.shield(self._release_cancelled(conn))
            raise
        except BaseException:
            await self.discard(conn, reason="dirty connection at checkout")
            raise
        self._metrics.inc("pool.checkout")
        return conn

    async def _release_cancelled(self, conn: AsyncConnection) -> None:
        # interrupted, not dirty: reset and return the slot
        try:
            await conn.rollback()
            await self._setting.reset(conn)
        except Exception:
            logger.error("Cleanup after cancelled checkout failed", exc_info=True)
            await self.discard(conn, reason="cleanup after cancelled checkout failed")
            return
        await self.checkin(conn)

    async def _ensure_clean(self, conn: AsyncConnection) -> None:
        leftover = conn.info.get(BOUND_TENANT_KEY)
        if leftover is not None:
            raise BindError(
                "Pooled connection still carries a tenant annotation",
                details={"leftover_tenant": leftover},
            )
        if not self._verify:
            return
        try:
            value = await self._setting.read(conn)
            await conn.rollback()
        except Exception as exc:
            raise BindError("Could not verify the session setting at checkout") from exc
        if not self._setting.is_clean(value):
            raise BindError(
                "Pooled connection session setting was not reset",
                details={"leftover_tenant": value},
            )

    async def checkin(self, conn: AsyncConnection) -> None:
        """Return a connection whose annotation has been cleared."""
        if conn.info.get(BOUND_TENANT_KEY) is not None:
            await self.discard(conn, reason="checkin with tenant annotation still set")
            return
        try:
            await conn.close()
        finally:
            self._checked_out -= 1
            self._slots.release()
            self._metrics.inc("pool.checkin")
            self._publish()

    async def discard(self, conn: AsyncConnection, reason: str) -> None:
        """Invalidate the connection and quarantine its slot."""
        info = conn.info if not conn.closed else {}
        leftover = info.get(BOUND_TENANT_KEY)
        try:
            await conn.invalidate()
        except Exception:
            logger.exception("Failed to invalidate discarded connection")
        else:
            # the physical connection is gone; its record starts clean
            info.pop(BOUND_TENANT_KEY, None)
        try:
            await conn.close()
        except Exception:
            logger.exception("Failed to close discarded connection")
        self._checked_out -= 1
        self._quarantined += 1
        self._discarded_total += 1
        self._metrics.inc("pool.discard")
        self._publish()
        logger.critical(
            "Discarded pooled connection: %s (capacity now %d/%d)",
            reason, self.capacity, self._size,
            extra={"reason": reason, "tenant_id": leftover},
        )

    def replenish(self, count: Optional[int] = None) -> int:
        """Return quarantined slots to circulation after operator review."""
        count = self._quarantined if count is None else min(count, self._quarantined)
        for _ in range(count):
            self._quarantined -= 1
            self._slots.release()
        if count:
            logger.warning("Replenished %d quarantined pool slot(s)", count)
            self._publish()
        return count

    async def dispose(self) -> None:
        await self._engine.dispose()

    def engine_stats(self) -> Dict[str, Any]:
        """Raw counters of the underlying SQLAlchemy pool."""
        pool = self._engine.sync_engine.pool
        stats: Dict[str, Any] = {}
        for name in ("size", "checkedout", "checkedin", "overflow"):
            fn = getattr(pool, name, None)
            stats[name] = int(fn()) if callable(fn) else None
        return stats
