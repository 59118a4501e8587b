# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Isolation Guard — Default-deny authorization for bound work.

An operation proceeds only when:
  - it is an ordinary tenant operation and a non-sentinel context is bound, or
  - it is declared system-level and the context has is_system set.

Row checks are delegated to the PolicyCatalogue so a handler that forgot
to filter by tenant is still stopped here before the database sees it.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Optional, Union

from tenant_scope.core.errors import Forbidden, MissingTenant, Unauthenticated
from tenant_scope.core.metrics import Metrics, isolation_metrics
from tenant_scope.core.tenant import TenantContext
from tenant_scope.isolation.catalogue import PolicyAction, PolicyCatalogue

logger = logging.getLogger("tenant_scope.guard")


class OperationKind(str, enum.Enum):
    TENANT = "tenant"
    SYSTEM = "system"


class IsolationGuard:
    """Fail-closed policy in front of the ConnectionBinder."""

    def __init__(
        self,
        catalogue: PolicyCatalogue,
        max_context_age_seconds: int = 0,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.catalogue = catalogue
        self._max_age = max_context_age_seconds
        self._metrics = metrics or isolation_metrics

    def _deny(self, exc_type, message: str, context: Optional[TenantContext], **details):
        self._metrics.inc("guard.denied")
        logger.warning(
            "Isolation guard denied: %s", message,
            extra={
                "tenant_id": context.tenant_key if context else None,
                "is_system": context.is_system if context else None,
                "reason": exc_type.code,
            },
        )
        return exc_type(message, details=details or None)

    def authorize(
        self,
        context: Optional[TenantContext],
        operation: Union[OperationKind, str] = OperationKind.TENANT,
    ) -> TenantContext:
        """Return the context if it may be bound for `operation`, else raise."""
        operation = OperationKind(operation)

        if context is None:
            raise self._deny(MissingTenant, "No tenant context supplied", None)

        if context.is_expired(self._max_age):
            raise self._deny(
                Unauthenticated, "Tenant context has expired", context,
                max_age_seconds=self._max_age,
            )

        if operation is OperationKind.SYSTEM:
            if not context.is_system:
                raise self._deny(
                    Forbidden, "System operation requested by a non-system caller", context,
                )
            return context

        if context.is_sentinel:
            raise self._deny(
                Forbidden, "The sentinel tenant cannot be bound for tenant operations", context,
            )
        return context

    def check_row(
        self,
        context: TenantContext,
        entity: str,
        action: Union[PolicyAction, str],
        row_tenant: Union[str, uuid.UUID],
    ) -> None:
        """Reject a read or write of a row owned by another tenant."""
        if not self.catalogue.permits(entity, action, row_tenant, context.tenant_id):
            raise self._deny(
                Forbidden,
                f"Cross-tenant {PolicyAction(action).value} on '{entity}' rejected",
                context,
                entity=entity,
                row_tenant=str(row_tenant),
            )
