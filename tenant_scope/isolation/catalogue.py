# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.

"""
Policy Catalogue — Declarative row-isolation rules per entity.

Each tenant-scoped entity gets a policy triple:

    select_filter   rows visible to the bound tenant
    insert_check    rows the bound tenant may create
    update_check    rows the bound tenant may write back

all of the form  row.tenant_id = current_setting(<key>, true).
Deletes reuse the select filter.

The same expressions are used three ways: compiled into CREATE POLICY
statements for PostgreSQL, appended to repository queries, and evaluated
in process by the IsolationGuard. An entity with a tenant column but no
policy and no explicit exemption is a configuration error.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Set, Union

import yaml
from sqlalchemy import DDL, MetaData, String, Table, column, event, or_
from sqlalchemy.dialects import postgresql
from sqlalchemy.engine import Dialect
from sqlalchemy.sql.elements import ColumnElement

from tenant_scope.core.errors import PolicyMissing
from tenant_scope.core.tenant import SENTINEL_TENANT_ID
from tenant_scope.storage.session_settings import SessionSetting

logger = logging.getLogger("tenant_scope.catalogue")

DEFAULT_CATALOGUE_PATH = Path(__file__).parent / "policies.yaml"


class CatalogueValidationError(Exception):
    """Raised when a YAML policy catalogue is malformed."""
    pass


class PolicyAction(str, enum.Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class PolicyTriple(NamedTuple):
    select_filter: ColumnElement
    insert_check: ColumnElement
    update_check: ColumnElement


@dataclass(frozen=True)
class EntityPolicy:
    """Isolation rule for one tenant-scoped table."""

    entity: str
    tenant_column: str = "tenant_id"
    # Bootstrap rows owned by the sentinel tenant are readable by everyone.
    share_bootstrap_rows: bool = False


class PolicyCatalogue:
    """Registry of EntityPolicies, versioned alongside schema migrations."""

    def __init__(
        self,
        setting: SessionSetting,
        version: int = 1,
        tenant_column: str = "tenant_id",
    ) -> None:
        self.setting = setting
        self.version = version
        self.tenant_column = tenant_column
        self._policies: Dict[str, EntityPolicy] = {}
        self._exempt: Set[str] = set()

    # ── Registration ───────────────────────────────────────────

    def register(self, policy: EntityPolicy) -> None:
        if policy.entity in self._exempt:
            raise ValueError(f"'{policy.entity}' is exempt and cannot also carry a policy")
        self._policies[policy.entity] = policy

    def exempt(self, entity: str) -> None:
        """Mark a table that carries a tenant column but is not row-filtered."""
        if entity in self._policies:
            raise ValueError(f"'{entity}' already has a policy")
        self._exempt.add(entity)

    def get(self, entity: str) -> Optional[EntityPolicy]:
        return self._policies.get(entity)

    def require(self, entity: str) -> EntityPolicy:
        policy = self._policies.get(entity)
        if policy is None:
            raise PolicyMissing([entity])
        return policy

    def is_exempt(self, entity: str) -> bool:
        return entity in self._exempt

    @property
    def entities(self) -> List[str]:
        return sorted(self._policies)

    @property
    def exempt_entities(self) -> List[str]:
        return sorted(self._exempt)

    def __contains__(self, entity: str) -> bool:
        return entity in self._policies

    def __len__(self) -> int:
        return len(self._policies)

    # ── Validation ─────────────────────────────────────────────

    def missing_policies(self, metadata: MetaData) -> List[str]:
        """Tables with a tenant column that are neither covered nor exempt."""
        missing = []
        for table in metadata.sorted_tables:
            if table.name in self._policies or table.name in self._exempt:
                continue
            if self.tenant_column in table.c:
                missing.append(table.name)
        for name, policy in self._policies.items():
            table = metadata.tables.get(name)
            if table is None or policy.tenant_column not in table.c:
                missing.append(name)
        return sorted(set(missing))

    def validate(self, metadata: MetaData) -> None:
        """Fail startup when any tenant-scoped table is uncovered."""
        missing = self.missing_policies(metadata)
        if missing:
            logger.critical("Policy catalogue v%d is incomplete: %s", self.version, missing)
            raise PolicyMissing(missing)
        logger.info(
            "Policy catalogue v%d covers %d entities (%d exempt)",
            self.version, len(self._policies), len(self._exempt),
        )

    # ── Predicates ─────────────────────────────────────────────

    def _predicates(self, policy: EntityPolicy, tenant_col: ColumnElement) -> PolicyTriple:
        own_rows = tenant_col == self.setting.current()
        visible = own_rows
        if policy.share_bootstrap_rows:
            visible = or_(own_rows, tenant_col == str(SENTINEL_TENANT_ID))
        return PolicyTriple(select_filter=visible, insert_check=own_rows, update_check=own_rows)

    def triple(self, table: Table) -> PolicyTriple:
        """Predicates bound to the table's columns, for use in queries."""
        policy = self.require(table.name)
        return self._predicates(policy, table.c[policy.tenant_column])

    def select_filter(self, table: Table) -> ColumnElement:
        return self.triple(table).select_filter

    def permits(
        self,
        entity: str,
        action: Union[PolicyAction, str],
        row_tenant: Union[str, uuid.UUID],
        bound_tenant: Union[str, uuid.UUID],
    ) -> bool:
        """Evaluate the policy triple in process."""
        policy = self.require(entity)
        action = PolicyAction(action)
        row = str(row_tenant)
        bound = str(bound_tenant)
        if action in (PolicyAction.SELECT, PolicyAction.DELETE):
            if row == bound:
                return True
            return (
                action is PolicyAction.SELECT
                and policy.share_bootstrap_rows
                and row == str(SENTINEL_TENANT_ID)
            )
        return row == bound

    # ── DDL ────────────────────────────────────────────────────

    def ddl_for(self, table: Table, dialect: Optional[Dialect] = None) -> List[str]:
        """Render row-level security statements for one table."""
        dialect = dialect or postgresql.dialect()
        policy = self.require(table.name)
        preparer = dialect.identifier_preparer
        table_name = preparer.format_table(table)
        triple = self._predicates(policy, column(policy.tenant_column, String))

        def sql(expr: ColumnElement) -> str:
            return str(expr.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))

        statements = [
            f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY",
            f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY",
        ]
        clauses = [
            (PolicyAction.SELECT, triple.select_filter, None),
            (PolicyAction.INSERT, None, triple.insert_check),
            (PolicyAction.UPDATE, triple.insert_check, triple.update_check),
            (PolicyAction.DELETE, triple.insert_check, None),
        ]
        for action, using, check in clauses:
            name = preparer.quote(f"tenant_{action.value}_{table.name}")
            stmt = f"CREATE POLICY {name} ON {table_name} FOR {action.value.upper()}"
            if using is not None:
                stmt += f" USING ({sql(using)})"
            if check is not None:
                stmt += f" WITH CHECK ({sql(check)})"
            statements.append(stmt)
        return statements

    def install(self, metadata: MetaData) -> None:
        """Attach policy DDL to table creation on PostgreSQL."""
        dialect = postgresql.dialect()
        for name in self.entities:
            table = metadata.tables.get(name)
            if table is None or table.info.get("tenant_scope.policies_installed"):
                continue
            table.info["tenant_scope.policies_installed"] = self.version
            for stmt in self.ddl_for(table, dialect):
                ddl = DDL(stmt.replace("%", "%%")).execute_if(dialect="postgresql")
                event.listen(table, "after_create", ddl)


# ── Loading ─────────────────────────────────────────────────

def validate_catalogue_config(config: Any) -> List[str]:
    """
    Validate a raw catalogue mapping. Returns error messages (empty = valid).

    Checks:
      1. Top level is a mapping with an integer `version` >= 1
      2. `entities` is a list of mappings with a non-empty `entity`
      3. No entity is listed twice, or both covered and exempt
      4. `exempt` is a list of names
    """
    if not isinstance(config, dict):
        return ["Catalogue must be a mapping"]

    errors = []
    version = config.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        errors.append("version must be a positive integer")

    entities = config.get("entities") or []
    exempt = config.get("exempt") or []
    if not isinstance(entities, list):
        errors.append("entities must be a list")
        entities = []
    if not isinstance(exempt, list):
        errors.append("exempt must be a list")
        exempt = []

    seen: Set[str] = set()
    for i, entry in enumerate(entities):
        if not isinstance(entry, dict) or not entry.get("entity"):
            errors.append(f"entities[{i}] must be a mapping with an 'entity' name")
            continue
        name = entry["entity"]
        if name in seen:
            errors.append(f"Entity '{name}' listed more than once")
        seen.add(name)
        unknown = set(entry) - {"entity", "tenant_column", "share_bootstrap_rows"}
        if unknown:
            errors.append(f"Entity '{name}' has unknown keys: {sorted(unknown)}")

    for name in exempt:
        if not isinstance(name, str) or not name:
            errors.append(f"Invalid exempt entry: {name!r}")
        elif name in seen:
            errors.append(f"Entity '{name}' is both covered and exempt")

    return errors


def catalogue_from_config(config: Dict[str, Any], setting: SessionSetting) -> PolicyCatalogue:
    errors = validate_catalogue_config(config)
    if errors:
        raise CatalogueValidationError("; ".join(errors))
    catalogue = PolicyCatalogue(
        setting,
        version=config["version"],
        tenant_column=config.get("tenant_column", "tenant_id"),
    )
    for entry in config.get("entities") or []:
        catalogue.register(EntityPolicy(
            entity=entry["entity"],
            tenant_column=entry.get("tenant_column", catalogue.tenant_column),
            share_bootstrap_rows=bool(entry.get("share_bootstrap_rows", False)),
        ))
    for name in config.get("exempt") or []:
        catalogue.exempt(name)
    return catalogue


def load_catalogue_from_yaml(path: Union[str, Path], setting: SessionSetting) -> PolicyCatalogue:
    """Load a policy catalogue from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f)
    return catalogue_from_config(config, setting)


def load_catalogue_from_string(yaml_content: str, setting: SessionSetting) -> PolicyCatalogue:
    """Load a policy catalogue from a YAML string."""
    return catalogue_from_config(yaml.safe_load(yaml_content), setting)


def load_default_catalogue(
    setting: SessionSetting,
    path: Optional[Union[str, Path]] = None,
) -> PolicyCatalogue:
    return load_catalogue_from_yaml(path or DEFAULT_CATALOGUE_PATH, setting)


def iter_ddl(catalogue: PolicyCatalogue, metadata: MetaData) -> Iterable[str]:
    """All policy statements for the tables a catalogue covers, in table order."""
    for table in metadata.sorted_tables:
        if table.name in catalogue:
            yield from catalogue.ddl_for(table)
