# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Context Propagator — Verified claims in, TenantContext out.

Credentials arrive already verified upstream. The propagator extracts the
tenant claim, validates it, and parks the resulting TenantContext in a
per-task carrier (a ContextVar) for the lifetime of the request.

There is no fallback tenant: a missing claim on an ordinary request fails
with MissingTenant. System callers opt in explicitly.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Mapping, Optional

from tenant_scope.core.config import TenantScopeSettings, settings as default_settings
from tenant_scope.core.errors import Forbidden, MissingTenant, Unauthenticated
from tenant_scope.core.tenant import TenantContext, parse_tenant_id

logger = logging.getLogger("tenant_scope.propagation")

_current: ContextVar[Optional[TenantContext]] = ContextVar(
    "tenant_scope_current_tenant", default=None
)


def current_tenant() -> Optional[TenantContext]:
    """Return the TenantContext bound to the running task, if any."""
    return _current.get()


def require_tenant() -> TenantContext:
    """Return the active TenantContext or fail closed."""
    ctx = _current.get()
    if ctx is None:
        raise MissingTenant("No tenant context is active for this unit of work")
    return ctx


@contextmanager
def tenant_scope(context: TenantContext) -> Iterator[TenantContext]:
    """
    Make `context` the active tenant for the enclosed block.

    The previous value is restored on exit. Re-entering with the same
    context is a no-op; switching to another tenant inside an active
    scope is refused.
    """
    active = _current.get()
    if active is not None and active != context:
        raise Forbidden(
            "A different tenant context is already active for this task",
            details={"active_tenant": active.tenant_key, "requested_tenant": context.tenant_key},
        )
    token = _current.set(context)
    try:
        yield context
    finally:
        _current.reset(token)


class ContextPropagator:
    """Builds TenantContexts from verified credential claims."""

    def __init__(self, config: Optional[TenantScopeSettings] = None) -> None:
        self._settings = config or default_settings

    def roles_of(self, claims: Mapping[str, Any]) -> tuple[str, ...]:
        """Roles claim as a tuple; a space-separated string is split."""
        roles = claims.get(self._settings.ROLES_CLAIM)
        if roles is None or roles == "":
            return ()
        if isinstance(roles, str):
            return tuple(roles.split())
        if isinstance(roles, (list, tuple, set, frozenset)) and all(isinstance(r, str) for r in roles):
            return tuple(roles)
        raise Unauthenticated(
            "Roles claim must be a string or a list of strings",
            details={"claim": self._settings.ROLES_CLAIM},
        )

    def is_system_caller(self, claims: Mapping[str, Any]) -> bool:
        return self._settings.SYSTEM_ROLE in self.roles_of(claims)

    def resolve(
        self,
        claims: Optional[Mapping[str, Any]],
        *,
        system: bool = False,
    ) -> TenantContext:
        """
        Resolve verified claims into a TenantContext.

        Raises:
            Unauthenticated: claims is missing or empty, or the roles claim is malformed.
            MissingTenant:   no well-formed tenant claim on an ordinary caller.
            Forbidden:       an ordinary caller presents the sentinel tenant.
        """
        if not isinstance(claims, Mapping) or not claims:
            raise Unauthenticated("No verified credential payload")

        roles = self.roles_of(claims)
        is_system = system or self._settings.SYSTEM_ROLE in roles
        subject = claims.get(self._settings.SUBJECT_CLAIM)

        raw_tenant = claims.get(self._settings.TENANT_CLAIM)
        if raw_tenant in (None, ""):
            if not is_system:
                logger.warning("Rejected credential without tenant claim (subject=%s)", subject)
                raise MissingTenant("Credential carries no tenant claim")
            return TenantContext.system(subject=subject or "system", roles=roles)

        try:
            tenant_id = parse_tenant_id(raw_tenant)
        except ValueError as exc:
            logger.warning("Rejected malformed tenant claim (subject=%s): %s", subject, exc)
            raise MissingTenant(
                "Tenant claim is not a well-formed identifier",
                details={"claim": self._settings.TENANT_CLAIM},
            ) from exc

        ctx = TenantContext(
            tenant_id=tenant_id,
            is_system=is_system,
            subject=subject,
            roles=roles,
        )
        if ctx.is_sentinel and not ctx.is_system:
            logger.warning("Rejected sentinel tenant claim from ordinary caller (subject=%s)", subject)
            raise Forbidden("The sentinel tenant cannot be claimed by ordinary callers")
        return ctx

    @contextmanager
    def scope(
        self,
        claims: Optional[Mapping[str, Any]],
        *,
        system: bool = False,
    ) -> Iterator[TenantContext]:
        """Resolve claims and keep the context active for the enclosed block."""
        ctx = self.resolve(claims, system=system)
        with tenant_scope(ctx):
            yield ctx
