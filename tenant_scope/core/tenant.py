# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Tenant Context — The identity a unit of work runs under.

A TenantContext is created once per request by the ContextPropagator,
attached to exactly one transaction, and dropped when the request ends.
It is frozen: nothing downstream can retarget it to another tenant.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union

# Reserved "no tenant" identifier. Owns bootstrap rows only.
SENTINEL_TENANT_ID = uuid.UUID(int=0)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_tenant_id(value: Union[str, uuid.UUID]) -> uuid.UUID:
    """
    Parse a tenant identifier into a UUID.

    Only canonical UUID strings are accepted; braces, urn prefixes and
    bare hex are rejected so that one tenant has exactly one spelling.
    """
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        raise ValueError(f"tenant id must be a string, got {type(value).__name__}")
    text = value.strip().lower()
    parsed = uuid.UUID(text)
    if str(parsed) != text:
        raise ValueError(f"tenant id is not a canonical UUID: {value!r}")
    return parsed


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant identity for request-scoped operations."""

    tenant_id: uuid.UUID
    is_system: bool = False
    issued_at: datetime = field(default_factory=_utcnow)
    subject: Optional[str] = None
    roles: tuple[str, ...] = ()

    def __post_init__(self):
        if self.tenant_id is None:
            raise ValueError("tenant_id must not be empty")
        object.__setattr__(self, "tenant_id", parse_tenant_id(self.tenant_id))
        object.__setattr__(self, "roles", tuple(self.roles))
        if self.issued_at.tzinfo is None:
            raise ValueError("issued_at must be timezone-aware")

    @classmethod
    def system(cls, subject: str = "system", roles: tuple[str, ...] = ()) -> "TenantContext":
        """Explicit opt-in context for bootstrap and platform maintenance."""
        return cls(tenant_id=SENTINEL_TENANT_ID, is_system=True, subject=subject, roles=roles)

    @property
    def is_sentinel(self) -> bool:
        return self.tenant_id == SENTINEL_TENANT_ID

    @property
    def tenant_key(self) -> str:
        """Text form stored in tenant_id columns and the session setting."""
        return str(self.tenant_id)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or _utcnow()
        return (now - self.issued_at).total_seconds()

    def is_expired(self, max_age_seconds: int, now: Optional[datetime] = None) -> bool:
        if max_age_seconds <= 0:
            return False
        return self.age_seconds(now) > max_age_seconds

    def __repr__(self) -> str:
        return f"TenantContext(tenant={self.tenant_key!r}, system={self.is_system})"
