import json

import pytest
from sqlalchemy import text

from appharbor.app_registry.manifest_loader import ManifestLoader, load_manifest_file
from appharbor.app_registry.models import AppDefinition
from appharbor.app_registry.tenant_apps_service import TenantAppsService
from appharbor.app_registry.registry_service import RegistryService
from appharbor.exceptions import ValidationError


@pytest.fixture
def domain_table(session):
    session.execute(text("CREATE TABLE supplier_scores (id INTEGER PRIMARY KEY)"))
    return "supplier_scores"


@pytest.fixture
def manifest(domain_table):
    return {
        "key": "supplier-eval",
        "name": "Supplier Evaluation",
        "version": "1.2.0",
        "domain_tables": [domain_table],
        "capabilities": ["scoring"],
        "mcp_actions": [
            {"key": "score", "version": "1.0.0", "input_schema": {"type": "object"}}
        ],
    }


def test_valid_manifest_with_empty_table_passes(session, manifest):
    result = ManifestLoader(session).validate_manifest(manifest)

    assert result.to_dict() == {"ok": True, "errors": []}


def test_schema_errors_are_reported_together(session):
    result = ManifestLoader(session).validate_manifest(
        {"key": "Bad_Key", "name": "", "version": "1.0", "domain_tables": []}
    )

    assert result.ok is False
    fields = {error.split(":")[0] for error in result.errors}
    assert {"key", "name", "version", "domain_tables"} <= fields


def test_missing_domain_table_is_named(session, manifest):
    manifest["domain_tables"].append("ghost_table")

    result = ManifestLoader(session).validate_manifest(manifest)

    assert result.ok is False
    assert len(result.errors) == 1
    assert "Domain table 'ghost_table' does not exist or is not accessible" in result.errors[0]


def test_register_from_manifest_inserts_then_updates(session, manifest):
    loader = ManifestLoader(session)

    created = loader.register_from_manifest(manifest)
    assert created.app_type == "custom"
    assert created.icon_name == "Package"
    assert created.schema_version == "1.2.0"
    assert created.mcp_actions[0]["key"] == "score"

    manifest.update({"name": "Supplier Eval v2", "version": "1.3.0", "app_type": "addon"})
    updated = loader.register_from_manifest(manifest)

    assert updated.id == created.id
    assert updated.name == "Supplier Eval v2"
    assert updated.schema_version == "1.3.0"
    assert updated.app_type == "custom"
    assert session.query(AppDefinition).count() == 1


def test_register_invalid_manifest_raises_joined_errors(session, manifest):
    manifest["version"] = "one"
    manifest["key"] = "Not Kebab"

    with pytest.raises(ValidationError) as exc:
        ManifestLoader(session).register_from_manifest(manifest)

    assert exc.value.message.startswith("Manifest validation failed: ")
    assert len(exc.value.errors) == 2
    assert ", ".join(exc.value.errors) in exc.value.message


def test_check_migration_needed_compares_recorded_tables(session, manifest, domain_table):
    loader = ManifestLoader(session)
    loader.register_from_manifest(manifest)
    RegistryService(session).publish_version("supplier-eval", "1.2.0")
    TenantAppsService(session).install("tenant-1", "supplier-eval")

    assert loader.check_migration_needed("tenant-1", "supplier-eval", "1.3.0") is False
    assert loader.check_migration_needed("tenant-2", "supplier-eval", "1.3.0") is False

    session.execute(text("CREATE TABLE supplier_audits (id INTEGER PRIMARY KEY)"))
    manifest["domain_tables"] = ["supplier_audits", domain_table]
    loader.register_from_manifest(manifest)

    assert loader.check_migration_needed("tenant-1", "supplier-eval", "1.3.0") is True

    manifest["domain_tables"] = [domain_table]
    loader.register_from_manifest(manifest)
    assert loader.check_migration_needed("tenant-1", "supplier-eval", "1.3.0") is False


class TestLoadManifestFile:
    def test_reads_yaml_and_json(self, tmp_path):
        yaml_path = tmp_path / "app.yaml"
        yaml_path.write_text(
            "key: supplier-eval\nname: Supplier Evaluation\nversion: 1.2.0\n"
            "domain_tables:\n  - supplier_scores\n",
            encoding="utf-8",
        )
        json_path = tmp_path / "app.json"
        json_path.write_text(json.dumps({"key": "crm-lite", "name": "CRM"}), encoding="utf-8")

        assert load_manifest_file(yaml_path)["domain_tables"] == ["supplier_scores"]
        assert load_manifest_file(yaml_path)["version"] == "1.2.0"
        assert load_manifest_file(str(json_path))["key"] == "crm-lite"

    def test_rejects_unknown_format_missing_file_and_bad_content(self, tmp_path):
        toml_path = tmp_path / "app.toml"
        toml_path.write_text("key = 'x'", encoding="utf-8")
        broken = tmp_path / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        listing = tmp_path / "list.yml"
        listing.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            load_manifest_file(toml_path)
        with pytest.raises(ValidationError):
            load_manifest_file(tmp_path / "absent.yaml")
        with pytest.raises(ValidationError):
            load_manifest_file(broken)
        with pytest.raises(ValidationError):
            load_manifest_file(listing)
