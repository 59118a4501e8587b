# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Documents API — Tenant-scoped CRUD. Every handler runs inside one
tenant-bound transaction.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from tenant_scope.api.deps import get_binder, get_current_tenant
from tenant_scope.api.errors import DocumentNotFoundError
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.binder import ConnectionBinder
from tenant_scope.storage.repositories import DocumentRepository

router = APIRouter(prefix="/documents", tags=["documents"])


class DocumentCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    body: str = ""


class DocumentUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=256)
    body: Optional[str] = None


@router.post("", status_code=201)
async def create_document(
    req: DocumentCreateRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    binder: ConnectionBinder = Depends(get_binder),
):
    """Create a document owned by the caller's tenant."""
    async def _create(bound):
        doc = await DocumentRepository(bound).create(req.title, req.body)
        return doc.to_dict()

    return await binder.with_tenant_transaction(tenant, _create)


@router.get("")
async def list_documents(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    tenant: TenantContext = Depends(get_current_tenant),
    binder: ConnectionBinder = Depends(get_binder),
):
    """List the caller's documents, newest first."""
    async def _list(bound):
        repo = DocumentRepository(bound)
        docs = await repo.list(limit=limit, offset=offset)
        return {
            "documents": [d.to_dict() for d in docs],
            "total": await repo.count(),
        }

    return await binder.with_tenant_transaction(tenant, _list)


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    binder: ConnectionBinder = Depends(get_binder),
):
    async def _get(bound):
        doc = await DocumentRepository(bound).get(document_id)
        return doc.to_dict() if doc is not None else None

    result = await binder.with_tenant_transaction(tenant, _get)
    if result is None:
        raise DocumentNotFoundError(document_id)
    return result


@router.patch("/{document_id}")
async def update_document(
    document_id: str,
    req: DocumentUpdateRequest,
    tenant: TenantContext = Depends(get_current_tenant),
    binder: ConnectionBinder = Depends(get_binder),
):
    async def _update(bound):
        doc = await DocumentRepository(bound).update(
            document_id, **req.model_dump(exclude_none=True)
        )
        return doc.to_dict() if doc is not None else None

    result = await binder.with_tenant_transaction(tenant, _update)
    if result is None:
        raise DocumentNotFoundError(document_id)
    return result


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    tenant: TenantContext = Depends(get_current_tenant),
    binder: ConnectionBinder = Depends(get_binder),
):
    async def _delete(bound):
        return await DocumentRepository(bound).delete(document_id)

    if not await binder.with_tenant_transaction(tenant, _delete):
        raise DocumentNotFoundError(document_id)
    return Response(status_code=204)
