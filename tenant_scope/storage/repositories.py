# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Repository Layer — Tenant-filtered access through a BoundConnection.

Every query carries the catalogue's select filter and every write is
checked by the IsolationGuard first, so isolation holds even where the
database does not enforce row policies itself.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update

from tenant_scope.core.errors import Forbidden
from tenant_scope.core.tenant import SENTINEL_TENANT_ID, parse_tenant_id
from tenant_scope.isolation.binder import BoundConnection
from tenant_scope.isolation.catalogue import PolicyAction
from tenant_scope.storage.models import Document, Tenant


# ── Scoped base ────────────────────────────────────────────

class ScopedRepository:
    """Base for repositories over one tenant-scoped model."""

    model = None

    def __init__(self, bound: BoundConnection):
        self.bound = bound
        self.db = bound.session
        self.catalogue = bound.catalogue
        self.table = self.model.__table__
        self.catalogue.require(self.table.name)

    @property
    def entity(self) -> str:
        return self.table.name

    def _visible(self):
        return self.catalogue.select_filter(self.table)

    def _writable(self):
        return self.catalogue.triple(self.table).update_check

    def _new(self, **fields: Any):
        row = self.model(context=self.bound.context, **fields)
        self.bound.check_row(self.entity, PolicyAction.INSERT, row.tenant_id)
        return row


# ── Document Repository ─────────────────────────────────────

class DocumentRepository(ScopedRepository):
    model = Document

    async def create(self, title: str, body: str = "") -> Document:
        """Create a document owned by the bound tenant."""
        doc = self._new(title=title, body=body)
        self.db.add(doc)
        await self.db.flush()
        return doc

    async def get(self, document_id: str) -> Optional[Document]:
        """Get a document visible to the bound tenant."""
        result = await self.db.execute(
            select(Document).where(Document.document_id == document_id, self._visible())
        )
        doc = result.scalar_one_or_none()
        if doc is not None:
            self.bound.check_row(self.entity, PolicyAction.SELECT, doc.tenant_id)
        return doc

    async def list(self, limit: int = 50, offset: int = 0) -> List[Document]:
        """List documents visible to the bound tenant, newest first."""
        result = await self.db.execute(
            select(Document)
            .where(self._visible())
            .order_by(Document.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        docs = list(result.scalars().all())
        for doc in docs:
            self.bound.check_row(self.entity, PolicyAction.SELECT, doc.tenant_id)
        return docs

    async def update(self, document_id: str, **values: Any) -> Optional[Document]:
        """Update title/body of a document owned by the bound tenant."""
        if "tenant_id" in values:
            raise Forbidden("tenant_id of an existing row cannot be changed")
        allowed = {k: v for k, v in values.items() if k in ("title", "body")}
        doc = await self.get(document_id)
        if doc is None:
            return None
        self.bound.check_row(self.entity, PolicyAction.UPDATE, doc.tenant_id)
        if allowed:
            await self.db.execute(
                update(Document)
                .where(Document.document_id == document_id, self._writable())
                .values(updated_at=datetime.now(timezone.utc), **allowed)
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(doc)
        return doc

    async def delete(self, document_id: str) -> bool:
        """Delete a document owned by the bound tenant."""
        doc = await self.get(document_id)
        if doc is None:
            return False
        self.bound.check_row(self.entity, PolicyAction.DELETE, doc.tenant_id)
        await self.db.execute(
            delete(Document)
            .where(Document.document_id == document_id, self._writable())
            .execution_options(synchronize_session=False)
        )
        self.db.expunge(doc)
        return True

    async def count(self) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Document).where(self._visible())
        )
        return int(result.scalar_one())


# ── Tenant Repository (system operations) ──────────────────

class TenantRepository:
    """Platform registry access; bind with OperationKind.SYSTEM."""

    def __init__(self, bound: BoundConnection):
        if not bound.context.is_system:
            raise Forbidden("Tenant registry changes require a system context")
        self.bound = bound
        self.db = bound.session

    async def bootstrap_sentinel(self) -> Tenant:
        """Create the sentinel tenant row if it does not exist yet."""
        existing = await self.get(str(SENTINEL_TENANT_ID))
        if existing is not None:
            return existing
        tenant = Tenant(tenant_id=str(SENTINEL_TENANT_ID), name="system", is_active=True)
        self.db.add(tenant)
        await self.db.flush()
        return tenant

    async def provision(self, tenant_id: str, name: str) -> Tenant:
        """Register a new tenant."""
        tenant_key = str(parse_tenant_id(tenant_id))
        if tenant_key == str(SENTINEL_TENANT_ID):
            raise Forbidden("The sentinel tenant is created by bootstrap only")
        tenant = Tenant(tenant_id=tenant_key, name=name, is_active=True)
        self.db.add(tenant)
        await self.db.flush()
        return tenant

    async def get(self, tenant_id: str) -> Optional[Tenant]:
        result = await self.db.execute(select(Tenant).where(Tenant.tenant_id == tenant_id))
        return result.scalar_one_or_none()

    async def list(self) -> List[Tenant]:
        result = await self.db.execute(select(Tenant).order_by(Tenant.created_at))
        return list(result.scalars().all())

    async def deactivate(self, tenant_id: str) -> None:
        await self.db.execute(
            update(Tenant).where(Tenant.tenant_id == tenant_id).values(is_active=False)
        )


def tenant_summary(tenant: Tenant) -> Dict[str, Any]:
    return {"tenant_id": tenant.tenant_id, "name": tenant.name, "is_active": tenant.is_active}
