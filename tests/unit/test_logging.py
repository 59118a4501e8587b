# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.
"""Unit tests for structured logging."""

import json
import logging
import sys
import uuid

from tenant_scope.core.logging import (
    StructuredFormatter,
    TenantContextFilter,
    setup_logging,
    trace_id_var,
)
from tenant_scope.core.propagation import tenant_scope
from tenant_scope.core.tenant import TenantContext


def _record(msg="hello", **extra):
    record = logging.LogRecord("tenant_scope.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredLogging:
    def test_json_output(self):
        entry = json.loads(StructuredFormatter().format(_record()))
        assert entry["level"] == "INFO"
        assert entry["module"] == "tenant_scope.test"
        assert entry["message"] == "hello"
        assert "tenant_id" not in entry

    def test_explicit_extra_fields(self):
        entry = json.loads(StructuredFormatter().format(
            _record(tenant_id="t-1", reason="session reset failed", connection_id=7),
        ))
        assert entry["tenant_id"] == "t-1"
        assert entry["reason"] == "session reset failed"
        assert entry["connection_id"] == 7

    def test_filter_stamps_active_tenant_and_trace(self):
        ctx = TenantContext(tenant_id=uuid.uuid4())
        record = _record()
        token = trace_id_var.set("trace-9")
        try:
            with tenant_scope(ctx):
                assert TenantContextFilter().filter(record)
        finally:
            trace_id_var.reset(token)
        entry = json.loads(StructuredFormatter().format(record))
        assert entry["tenant_id"] == ctx.tenant_key
        assert entry["is_system"] is False
        assert entry["trace_id"] == "trace-9"

    def test_filter_keeps_explicit_tenant(self):
        record = _record(tenant_id="explicit")
        with tenant_scope(TenantContext(tenant_id=uuid.uuid4())):
            TenantContextFilter().filter(record)
        assert record.tenant_id == "explicit"

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(StructuredFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]

    def test_setup_logging(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("debug")
            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
