# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.

Isolation failures keep their own codes (401/403/503) so operators can
tell an isolation violation apart from an ordinary server bug.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from tenant_scope.core.errors import IsolationError
from tenant_scope.core.logging import trace_id_var


class APIError(Exception):
    """Base API error with structured response."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
        trace_id: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.trace_id = trace_id or trace_id_var.get() or str(uuid.uuid4())
        super().__init__(message)


class DocumentNotFoundError(APIError):
    def __init__(self, document_id: str, trace_id: str = None):
        super().__init__(
            code="DOCUMENT_NOT_FOUND",
            message=f"Document '{document_id}' not found",
            status_code=404,
            trace_id=trace_id,
        )


class TenantConflictError(APIError):
    def __init__(self, tenant_id: str, trace_id: str = None):
        super().__init__(
            code="TENANT_EXISTS",
            message=f"Tenant '{tenant_id}' already exists",
            status_code=409,
            trace_id=trace_id,
        )


def isolation_error_response(exc: IsolationError, trace_id: Optional[str] = None) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "trace_id": trace_id or trace_id_var.get() or str(uuid.uuid4()),
            "details": exc.details,
        },
        headers=headers,
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Global exception handler for APIError."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "trace_id": exc.trace_id,
            "details": exc.details,
        },
    )


async def isolation_error_handler(request: Request, exc: IsolationError) -> JSONResponse:
    """Global exception handler for IsolationError."""
    return isolation_error_response(exc, getattr(request.state, "trace_id", None))
