# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Isolation Errors — One class per failure the layer can report.

Every error carries a stable code and the HTTP-equivalent status so the
API layer can surface isolation failures as authorization failures
rather than generic server errors.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class IsolationError(Exception):
    """Base error for tenant isolation failures."""

    code = "ISOLATION_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class Unauthenticated(IsolationError):
    """No usable credential; nothing downstream may run."""

    code = "UNAUTHENTICATED"
    status_code = 401


class MissingTenant(IsolationError):
    """Credential present but without a usable tenant claim."""

    code = "MISSING_TENANT"
    status_code = 403


class Forbidden(IsolationError):
    """Operation rejected because of tenant mismatch or sentinel misuse."""

    code = "TENANT_FORBIDDEN"
    status_code = 403


class BindError(IsolationError):
    """
    The tenant annotation could not be applied.

    The transaction was rolled back and the connection discarded.
    Operators should be alerted: this is a potential breach vector.
    """

    code = "TENANT_BIND_ERROR"
    status_code = 503


class PolicyMissing(IsolationError):
    """A tenant-scoped entity has no registered policy triple."""

    code = "POLICY_MISSING"
    status_code = 500

    def __init__(self, entities: list[str], message: Optional[str] = None):
        self.entities = sorted(entities)
        super().__init__(
            message or f"No isolation policy registered for: {', '.join(self.entities)}",
            details={"entities": self.entities},
        )


class PoolTimeout(IsolationError):
    """No pooled connection became free within the configured timeout."""

    code = "POOL_TIMEOUT"
    status_code = 503
