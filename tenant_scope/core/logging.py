# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Structured Logging — JSON format with trace and tenant context.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from typing import Optional

from tenant_scope.core.propagation import current_tenant

trace_id_var: ContextVar[Optional[str]] = ContextVar("tenant_scope_trace_id", default=None)


class TenantContextFilter(logging.Filter):
    """Stamps the active tenant and trace id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "tenant_id", None):
            ctx = current_tenant()
            if ctx is not None:
                record.tenant_id = ctx.tenant_key
                record.is_system = ctx.is_system
        if not getattr(record, "trace_id", None):
            trace_id = trace_id_var.get()
            if trace_id:
                record.trace_id = trace_id
        return True


class StructuredFormatter(logging.Formatter):
    """JSON log formatter with trace/tenant context."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        # Attach context if available
        for key in ("trace_id", "tenant_id", "is_system", "connection_id", "reason"):
            val = getattr(record, key, None)
            if val is not None and val != "":
                log_entry[key] = val

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the isolation layer."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(TenantContextFilter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
