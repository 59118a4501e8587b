# Copyright (c) 2026 TenantScope Contributors. All Rights Reserved.
"""Unit tests for PolicyCatalogue: coverage, predicates, DDL and YAML loading."""

import uuid

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, select
from sqlalchemy.dialects import postgresql, sqlite

from tenant_scope.core.errors import PolicyMissing
from tenant_scope.core.tenant import SENTINEL_TENANT_ID
from tenant_scope.isolation.catalogue import (
    CatalogueValidationError,
    EntityPolicy,
    PolicyCatalogue,
    iter_ddl,
    load_catalogue_from_string,
    load_catalogue_from_yaml,
    load_default_catalogue,
    validate_catalogue_config,
)
from tenant_scope.storage.database import Base
from tenant_scope.storage.session_settings import SessionSetting

import tenant_scope.storage.models  # noqa: F401


@pytest.fixture
def setting():
    return SessionSetting("app.current_tenant")


@pytest.fixture
def metadata():
    md = MetaData()
    Table("notes", md, Column("id", Integer, primary_key=True), Column("tenant_id", String(36)))
    Table("audit", md, Column("id", Integer, primary_key=True), Column("tenant_id", String(36)))
    Table("countries", md, Column("code", String(2), primary_key=True))
    return md


class TestCoverage:
    def test_default_catalogue_covers_models(self, setting):
        catalogue = load_default_catalogue(setting)
        catalogue.validate(Base.metadata)
        assert "documents" in catalogue
        assert catalogue.is_exempt("tenants")

    def test_uncovered_table_is_reported(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        assert catalogue.missing_policies(metadata) == ["audit"]
        with pytest.raises(PolicyMissing) as exc:
            catalogue.validate(metadata)
        assert exc.value.entities == ["audit"]
        assert exc.value.code == "POLICY_MISSING"

    def test_exempt_table_passes(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        catalogue.exempt("audit")
        catalogue.validate(metadata)

    def test_policy_for_unknown_table_is_reported(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        catalogue.register(EntityPolicy("ghosts"))
        catalogue.exempt("audit")
        assert catalogue.missing_policies(metadata) == ["ghosts"]

    def test_require_unknown_entity(self, setting):
        with pytest.raises(PolicyMissing):
            PolicyCatalogue(setting).require("notes")

    def test_cannot_both_cover_and_exempt(self, setting):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        with pytest.raises(ValueError):
            catalogue.exempt("notes")


class TestPredicates:
    def test_select_filter_compares_with_session_setting(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        table = metadata.tables["notes"]
        sql = str(select(table).where(catalogue.select_filter(table)).compile(
            dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True},
        ))
        assert "notes.tenant_id = current_setting('app.current_tenant', true)" in sql

    def test_shared_rows_widen_select_only(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes", share_bootstrap_rows=True))
        triple = catalogue.triple(metadata.tables["notes"])
        select_sql = str(triple.select_filter.compile(
            dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True},
        ))
        insert_sql = str(triple.insert_check.compile(
            dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True},
        ))
        assert str(SENTINEL_TENANT_ID) in select_sql
        assert str(SENTINEL_TENANT_ID) not in insert_sql

    def test_permits(self, setting):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        a, b = uuid.uuid4(), uuid.uuid4()
        for action in ("select", "insert", "update", "delete"):
            assert catalogue.permits("notes", action, a, a)
            assert not catalogue.permits("notes", action, a, b)
        assert not catalogue.permits("notes", "select", SENTINEL_TENANT_ID, a)


class TestDDL:
    def test_row_level_security_statements(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        ddl = catalogue.ddl_for(metadata.tables["notes"])
        assert ddl[0] == "ALTER TABLE notes ENABLE ROW LEVEL SECURITY"
        assert ddl[1] == "ALTER TABLE notes FORCE ROW LEVEL SECURITY"
        policies = ddl[2:]
        assert len(policies) == 4
        assert policies[0].startswith("CREATE POLICY tenant_select_notes ON notes FOR SELECT USING (")
        assert "WITH CHECK" in policies[1] and "USING" not in policies[1]
        assert "USING" in policies[2] and "WITH CHECK" in policies[2]
        assert policies[3].startswith("CREATE POLICY tenant_delete_notes ON notes FOR DELETE USING (")
        for stmt in policies:
            assert "current_setting('app.current_tenant', true)" in stmt

    def test_iter_ddl_follows_table_order(self, setting):
        catalogue = load_default_catalogue(setting)
        ddl = list(iter_ddl(catalogue, Base.metadata))
        assert len(ddl) == 6 * len(catalogue)
        assert all("documents" in stmt for stmt in ddl)

    def test_install_is_idempotent(self, setting, metadata):
        catalogue = PolicyCatalogue(setting)
        catalogue.register(EntityPolicy("notes"))
        catalogue.install(metadata)
        catalogue.install(metadata)
        assert metadata.tables["notes"].info["tenant_scope.policies_installed"] == 1


class TestLoading:
    def test_load_from_string(self, setting):
        catalogue = load_catalogue_from_string(
            """
version: 3
entities:
  - entity: notes
  - entity: invoices
    tenant_column: org_id
exempt:
  - audit
""",
            setting,
        )
        assert catalogue.version == 3
        assert catalogue.entities == ["invoices", "notes"]
        assert catalogue.get("invoices").tenant_column == "org_id"
        assert catalogue.exempt_entities == ["audit"]

    def test_load_from_file(self, setting, tmp_path):
        path = tmp_path / "policies.yaml"
        path.write_text("version: 1\nentities:\n  - entity: notes\n", encoding="utf-8")
        catalogue = load_catalogue_from_yaml(path, setting)
        assert "notes" in catalogue
        assert len(catalogue) == 1

    @pytest.mark.parametrize("config, fragment", [
        ([], "mapping"),
        ({"entities": []}, "version"),
        ({"version": 0}, "version"),
        ({"version": 1, "entities": [{"entity": "a"}, {"entity": "a"}]}, "more than once"),
        ({"version": 1, "entities": [{"entity": "a"}], "exempt": ["a"]}, "covered and exempt"),
        ({"version": 1, "entities": [{"entity": "a", "using": "true"}]}, "unknown keys"),
        ({"version": 1, "entities": [{"tenant_column": "x"}]}, "entity"),
    ])
    def test_validation_errors(self, config, fragment):
        errors = validate_catalogue_config(config)
        assert any(fragment in e for e in errors)

    def test_invalid_yaml_raises(self, setting):
        with pytest.raises(CatalogueValidationError):
            load_catalogue_from_string("version: one\n", setting)
