# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.
"""Unit tests for TenantPool accounting and hygiene checks."""

import asyncio

import pytest

from tenant_scope.core.errors import BindError, PoolTimeout
from tenant_scope.storage.pool import BOUND_TENANT_KEY, TenantPool
from tenant_scope.storage.session_settings import SessionSetting

from tests.support import build_context


class SlowRead(SessionSetting):
    async def read(self, conn):
        await asyncio.sleep(0.2)
        return await super().read(conn)


class TestTenantPool:
    @pytest.mark.asyncio
    async def test_checkout_and_checkin(self, iso):
        pool = iso.pool
        assert pool.available == 2
        conn = await pool.checkout()
        assert pool.available == 1
        assert pool.checked_out == 1
        await pool.checkin(conn)
        assert pool.available == 2
        assert iso.metrics.get_counter("pool.checkout") >= 1
        assert iso.metrics.get_gauge("pool.available") == 2

    @pytest.mark.asyncio
    async def test_timeout_when_exhausted(self, tmp_path):
        ctx = await build_context(tmp_path, pool_size=1, DB_POOL_TIMEOUT=0.1)
        try:
            conn = await ctx.pool.checkout()
            with pytest.raises(PoolTimeout) as exc:
                await ctx.pool.checkout()
            assert exc.value.details["available"] == 0
            assert ctx.metrics.get_counter("pool.timeout") == 1
            await ctx.pool.checkin(conn)
        finally:
            await ctx.close()

    @pytest.mark.asyncio
    async def test_waiter_gets_released_slot(self, tmp_path):
        ctx = await build_context(tmp_path, pool_size=1)
        try:
            first = await ctx.pool.checkout()
            waiter = asyncio.create_task(ctx.pool.checkout())
            await asyncio.sleep(0.05)
            assert not waiter.done()
            await ctx.pool.checkin(first)
            second = await asyncio.wait_for(waiter, timeout=2)
            await ctx.pool.checkin(second)
            assert ctx.pool.available == 1
        finally:
            await ctx.close()

    @pytest.mark.asyncio
    async def test_checkin_with_annotation_discards(self, iso):
        pool = iso.pool
        conn = await pool.checkout()
        conn.info[BOUND_TENANT_KEY] = "leftover"
        await pool.checkin(conn)
        assert pool.discarded == 1
        assert pool.capacity == 1
        assert pool.available == 1
        assert iso.metrics.get_counter("pool.discard") == 1

    @pytest.mark.asyncio
    async def test_dirty_session_setting_is_rejected_at_checkout(self, tmp_path):
        ctx = await build_context(tmp_path, pool_size=1)
        try:
            conn = await ctx.pool.checkout()
            # bypass the binder: leave a tenant in the session and close normally
            await ctx.setting.apply(conn, "11111111-1111-1111-1111-111111111111")
            await conn.commit()
            await conn.close()
            ctx.pool._checked_out -= 1
            ctx.pool._slots.release()

            with pytest.raises(BindError):
                await ctx.pool.checkout()
            assert ctx.pool.discarded == 1
            assert ctx.pool.capacity == 0
        finally:
            await ctx.close()

    @pytest.mark.asyncio
    async def test_cancelled_checkout_returns_slot(self, tmp_path):
        ctx = await build_context(tmp_path, pool_size=1)
        try:
            ctx.pool._setting = SlowRead(ctx.setting.key)
            task = asyncio.create_task(ctx.pool.checkout())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert ctx.pool.capacity == 1
            assert ctx.pool.available == 1
            assert ctx.pool.checked_out == 0
            assert ctx.pool.discarded == 0
            assert ctx.metrics.get_counter("pool.discard") == 0

            ctx.pool._setting = ctx.setting
            conn = await asyncio.wait_for(ctx.pool.checkout(), timeout=2)
            await ctx.pool.checkin(conn)
        finally:
            await ctx.close()

    @pytest.mark.asyncio
    async def test_replenish(self, iso):
        pool = iso.pool
        conn = await pool.checkout()
        await pool.discard(conn, reason="test")
        assert pool.capacity == 1
        assert pool.replenish() == 1
        assert pool.capacity == 2
        assert pool.available == 2
        assert pool.replenish() == 0

    @pytest.mark.asyncio
    async def test_stats(self, iso):
        stats = iso.pool.stats()
        assert stats == {
            "size": 2,
            "capacity": 2,
            "available": 2,
            "checked_out": 0,
            "quarantined": 0,
            "discarded_total": 0,
        }
        engine_stats = iso.pool.engine_stats()
        assert engine_stats["size"] == 2

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            TenantPool(None, SessionSetting("app.current_tenant"), size=0)
