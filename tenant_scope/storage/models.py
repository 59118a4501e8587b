# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
ORM Models — Tables guarded by the isolation layer.

Tables:
  - tenants:   platform registry (exempt from row policies, system writes only)
  - documents: example tenant-scoped entity

Tenant-scoped entities cannot be constructed without a TenantContext:
the tenant_id column is filled from the context, never from caller input.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import declared_attr

from tenant_scope.core.errors import Forbidden
from tenant_scope.core.tenant import TenantContext
from tenant_scope.storage.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


def _genuuid():
    return str(uuid.uuid4())


# ── Tenant-scoped mixin ────────────────────────────────────

class TenantScopedMixin:
    """Adds tenant_id and requires a TenantContext to construct rows."""

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(36),
            ForeignKey("tenants.tenant_id"),
            nullable=False,
            index=True,
        )

    def __init__(self, *, context: TenantContext, **kwargs: Any) -> None:
        if not isinstance(context, TenantContext):
            raise TypeError("tenant-scoped rows require a TenantContext")
        if "tenant_id" in kwargs:
            raise Forbidden("tenant_id is derived from the TenantContext and cannot be supplied")
        if context.is_sentinel and not context.is_system:
            raise Forbidden("Only system operations may create sentinel-owned rows")
        super().__init__(tenant_id=context.tenant_key, **kwargs)


# ── Tenants ────────────────────────────────────────────────

class Tenant(Base):
    __tablename__ = "tenants"

    tenant_id = Column(String(36), primary_key=True)
    name = Column(String(256), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Tenant {self.tenant_id} {self.name!r}>"


# ── Documents ──────────────────────────────────────────────

class Document(TenantScopedMixin, Base):
    __tablename__ = "documents"

    document_id = Column(String(36), primary_key=True, default=_genuuid)
    title = Column(String(256), nullable=False)
    body = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_documents_tenant_created", "tenant_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "body": self.body,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Document {self.document_id} tenant={self.tenant_id}>"
