# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Tenants API — Platform registry, system callers only.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from tenant_scope.api.deps import get_binder, get_system_context
from tenant_scope.api.errors import APIError, TenantConflictError
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.binder import ConnectionBinder
from tenant_scope.isolation.guard import OperationKind
from tenant_scope.storage.repositories import TenantRepository, tenant_summary

router = APIRouter(prefix="/admin/tenants", tags=["tenants"])


class TenantCreateRequest(BaseModel):
    tenant_id: str
    name: str = Field(..., min_length=1, max_length=256)


@router.post("", status_code=201)
async def provision_tenant(
    req: TenantCreateRequest,
    system: TenantContext = Depends(get_system_context),
    binder: ConnectionBinder = Depends(get_binder),
):
    """Register a new tenant."""
    async def _provision(bound):
        repo = TenantRepository(bound)
        if await repo.get(req.tenant_id) is not None:
            raise TenantConflictError(req.tenant_id)
        return tenant_summary(await repo.provision(req.tenant_id, req.name))

    try:
        return await binder.with_tenant_transaction(
            system, _provision, operation=OperationKind.SYSTEM,
        )
    except ValueError as e:
        raise APIError(code="INVALID_TENANT_ID", message=str(e), status_code=422)
    except IntegrityError:
        raise TenantConflictError(req.tenant_id)


@router.get("")
async def list_tenants(
    system: TenantContext = Depends(get_system_context),
    binder: ConnectionBinder = Depends(get_binder),
):
    async def _list(bound):
        return [tenant_summary(t) for t in await TenantRepository(bound).list()]

    tenants = await binder.with_tenant_transaction(
        system, _list, operation=OperationKind.SYSTEM,
    )
    return {"tenants": tenants, "count": len(tenants)}
