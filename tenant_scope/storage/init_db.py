# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Database Initialization — Validate policies, create tables and row
policies, bootstrap the sentinel tenant.

    python -m tenant_scope.storage.init_db           # apply
    python -m tenant_scope.storage.init_db --print   # only print policy DDL
"""

import argparse
import asyncio

from tenant_scope.core.config import settings
from tenant_scope.core.context import build_isolation_context
from tenant_scope.core.logging import setup_logging
from tenant_scope.isolation.catalogue import iter_ddl
from tenant_scope.storage.database import Base

# Ensure models are imported so Base.metadata knows about them
import tenant_scope.storage.models  # noqa: F401


async def main(print_only: bool = False):
    """Create all isolation-layer tables and policies."""
    setup_logging(settings.LOG_LEVEL)
    ctx = build_isolation_context(settings)
    try:
        ctx.validate()
        if print_only:
            for stmt in iter_ddl(ctx.catalogue, Base.metadata):
                print(f"{stmt};")
            return
        print("[init_db] Creating tables and row policies...")
        await ctx.create_schema()
        await ctx.bootstrap()
        print("[init_db] Done.")
    finally:
        await ctx.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the TenantScope database")
    parser.add_argument("--print", dest="print_only", action="store_true",
                        help="print row-policy DDL instead of applying it")
    args = parser.parse_args()
    asyncio.run(main(print_only=args.print_only))
