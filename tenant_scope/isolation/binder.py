# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Connection Binder — One tenant, one transaction, one pooled connection.

Lifecycle of a binding:

    authorize → checkout → BEGIN → set tenant (first statement)
      → unit of work → flush → COMMIT → reset → checkin

    on failure:   ROLLBACK → reset → checkin
    on reset or rollback failure: discard the connection (never checkin)

Cleanup runs under asyncio.shield so a cancelled request still rolls back,
resets and releases before its pool slot frees up.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from tenant_scope.core.errors import BindError, Forbidden
from tenant_scope.core.metrics import Metrics, isolation_metrics
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.catalogue import PolicyAction
from tenant_scope.isolation.guard import IsolationGuard, OperationKind
from tenant_scope.storage.pool import BOUND_TENANT_KEY, TenantPool
from tenant_scope.storage.session_settings import SessionSetting

logger = logging.getLogger("tenant_scope.binder")

T = TypeVar("T")
AlertHook = Callable[[str, TenantContext, BaseException], Any]

_active_binding: ContextVar[Optional["BoundConnection"]] = ContextVar(
    "tenant_scope_active_binding", default=None
)


def active_binding() -> Optional["BoundConnection"]:
    """The BoundConnection held by the running task, if any."""
    return _active_binding.get()


class BoundConnection:
    """A pooled connection annotated with one tenant for one checkout."""

    def __init__(
        self,
        connection: AsyncConnection,
        context: TenantContext,
        guard: IsolationGuard,
    ) -> None:
        self._connection = connection
        self._context = context
        self._guard = guard
        self._session: Optional[AsyncSession] = None
        self._released = False

    @property
    def context(self) -> TenantContext:
        return self._context

    @property
    def catalogue(self):
        return self._guard.catalogue

    @property
    def released(self) -> bool:
        return self._released

    @property
    def connection(self) -> AsyncConnection:
        if self._released:
            raise BindError("Bound connection used after release")
        return self._connection

    @property
    def session(self) -> AsyncSession:
        """ORM session joined to the bound transaction (created on first use)."""
        if self._session is None:
            self._session = AsyncSession(bind=self.connection, expire_on_commit=False)
        return self._session

    async def execute(self, statement, params=None):
        return await self.connection.execute(statement, params)

    def check_row(
        self,
        entity: str,
        action: Union[PolicyAction, str],
        row_tenant: Any,
    ) -> None:
        self._guard.check_row(self._context, entity, action, row_tenant)

    async def _flush(self) -> None:
        if self._session is not None:
            await self._session.flush()

    async def _close_session(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        try:
            await session.close()
        except Exception:
            logger.exception("Failed to close ORM session of bound connection")

    def _release(self) -> None:
        self._released = True

    def __repr__(self) -> str:
        state = "released" if self._released else "bound"
        return f"<BoundConnection tenant={self._context.tenant_key} {state}>"


class ConnectionBinder:
    """Binds TenantContexts to pooled connections for exactly one transaction."""

    def __init__(
        self,
        pool: TenantPool,
        setting: SessionSetting,
        guard: IsolationGuard,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.pool = pool
        self.setting = setting
        self.guard = guard
        self._metrics = metrics or isolation_metrics
        self._alert_hooks: List[AlertHook] = []

    def add_alert_hook(self, hook: AlertHook) -> None:
        """Register a callback for discards; may be sync or async."""
        self._alert_hooks.append(hook)

    async def _alert(self, event: str, context: TenantContext, exc: BaseException) -> None:
        for hook in self._alert_hooks:
            try:
                result = hook(event, context, exc)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Alert hook failed for %s", event)

    # ── Binding ────────────────────────────────────────────────

    @asynccontextmanager
    async def bind(
        self,
        context: TenantContext,
        *,
        operation: Union[OperationKind, str] = OperationKind.TENANT,
    ) -> AsyncIterator[BoundConnection]:
        """Check out a connection bound to `context` for one transaction."""
        self.guard.authorize(context, operation)
        active = _active_binding.get()
        if active is not None:
            raise Forbidden(
                "A tenant transaction is already bound in this task; release it first",
                details={"active_tenant": active.context.tenant_key},
            )

        conn = await self.pool.checkout()
        bound = BoundConnection(conn, context, self.guard)
        token = _active_binding.set(bound)
        try:
            await self._begin(bound)
            self._metrics.inc("binder.bind")
            started = time.monotonic()
            try:
                yield bound
                await bound._flush()
                await conn.commit()
            except BaseException as exc:
                await asyncio.shield(self._finish(bound, committed=False, error=exc))
                raise
            finally:
                self._metrics.observe("binder.unit_ms", (time.monotonic() - started) * 1000)
            await asyncio.shield(self._finish(bound, committed=True))
        finally:
            _active_binding.reset(token)

    async def with_tenant_transaction(
        self,
        context: TenantContext,
        unit: Callable[[BoundConnection], Awaitable[T]],
        *,
        operation: Union[OperationKind, str] = OperationKind.TENANT,
    ) -> T:
        """Run `unit` inside a tenant-bound transaction and return its result."""
        async with self.bind(context, operation=operation) as bound:
            return await unit(bound)

    # ── Internals ──────────────────────────────────────────────

    async def _begin(self, bound: BoundConnection) -> None:
        conn = bound._connection
        # marked before the statement runs so a half-applied bind is never checked in
        conn.info[BOUND_TENANT_KEY] = bound.context.tenant_key
        try:
            await conn.begin()
            await self.setting.apply(conn, bound.context.tenant_key)
        except asyncio.CancelledError:
            await asyncio.shield(self._release_cancelled_bind(bound))
            raise
        except BaseException as exc:
            await asyncio.shield(self._abort_bind(bound, exc))
            if isinstance(exc, Exception):
                raise BindError(
                    "Failed to apply tenant annotation",
                    details={"tenant_id": bound.context.tenant_key},
                ) from exc
            raise

    async def _release_cancelled_bind(self, bound: BoundConnection) -> None:
        conn = bound._connection
        try:
            await conn.rollback()
            await self.setting.reset(conn)
        except Exception as exc:
            logger.error("Cleanup after cancelled bind failed; discarding connection", exc_info=True)
            self._metrics.inc("binder.reset_error")
            await self._discard(bound, "cleanup after cancelled bind failed", exc)
            return
        self._metrics.inc("binder.rollback")
        conn.info.pop(BOUND_TENANT_KEY, None)
        bound._release()
        await self.pool.checkin(conn)

    async def _abort_bind(self, bound: BoundConnection, exc: BaseException) -> None:
        conn = bound._connection
        try:
            await conn.rollback()
        except Exception:
            logger.exception("Rollback after failed bind also failed")
        self._metrics.inc("binder.bind_error")
        await self._discard(bound, f"tenant annotation failed: {exc!r}", exc)

    async def _discard(self, bound: BoundConnection, reason: str, exc: BaseException) -> None:
        bound._release()
        self._metrics.inc("binder.discard")
        await self.pool.discard(bound._connection, reason=reason)
        await self._alert("discard", bound.context, exc)

    async def _finish(
        self,
        bound: BoundConnection,
        committed: bool,
        error: Optional[BaseException] = None,
    ) -> None:
        conn = bound._connection
        await bound._close_session()

        if committed:
            self._metrics.inc("binder.commit")
        else:
            try:
                await conn.rollback()
            except Exception as exc:
                logger.error("Rollback failed; discarding connection", exc_info=True)
                await self._discard(bound, "rollback failed", exc)
                return
            self._metrics.inc("binder.rollback")
            logger.info(
                "Rolled back tenant transaction: %r", error,
                extra={"tenant_id": bound.context.tenant_key},
            )

        try:
            await self.setting.reset(conn)
        except Exception as exc:
            logger.error("Session reset failed; discarding connection", exc_info=True)
            self._metrics.inc("binder.reset_error")
            await self._discard(bound, "session reset failed", exc)
            return

        conn.info.pop(BOUND_TENANT_KEY, None)
        bound._release()
        await self.pool.checkin(conn)
