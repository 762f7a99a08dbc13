import pytest

from appharbor.app_registry.models import TenantAppInstall
from appharbor.app_registry.registry_service import RegistryService
from appharbor.exceptions import ConflictError, NotFoundError, ValidationError


def test_list_definitions_orders_by_name_and_filters(session, seed_app):
    seed_app("zeta-crm", name="Zeta CRM", app_type="addon")
    seed_app("alpha-erp", name="Alpha ERP")
    retired = seed_app("beta-hr", name="Beta HR")
    registry = RegistryService(session)
    registry.deactivate_definition(retired.key)

    names = [d.name for d in registry.list_definitions()]
    assert names == ["Alpha ERP", "Beta HR", "Zeta CRM"]

    assert [d.key for d in registry.list_definitions(app_type="addon")] == ["zeta-crm"]
    active = registry.list_definitions(is_active=True)
    assert "beta-hr" not in {d.key for d in active}


def test_get_definition_by_key_missing_raises_not_found(session):
    with pytest.raises(NotFoundError) as exc:
        RegistryService(session).get_definition_by_key("nope")
    assert exc.value.status_code == 404
    assert "nope" in exc.value.message


def test_create_definition_rejects_duplicates_and_unknown_fields(session, seed_app):
    seed_app("jul25")
    registry = RegistryService(session)

    with pytest.raises(ConflictError):
        registry.create_definition(key="jul25", name="Again")
    with pytest.raises(ValidationError):
        registry.create_definition(key="other", name="Other", color="red")


def test_update_definition_sets_fields(session, seed_app):
    definition = seed_app("jul25")
    registry = RegistryService(session)

    updated = registry.update_definition(definition.id, {"description": "Supplier app"})
    assert updated.description == "Supplier app"

    with pytest.raises(ValidationError):
        registry.update_definition(definition.id, {"key": "renamed"})


def test_publish_version_validates_semver_and_duplicates(session, seed_app):
    seed_app("jul25", versions=("1.0.0",))
    registry = RegistryService(session)

    with pytest.raises(ValidationError):
        registry.publish_version("jul25", "v1")
    with pytest.raises(ConflictError):
        registry.publish_version("jul25", "1.0.0")
    with pytest.raises(NotFoundError):
        registry.publish_version("unknown", "1.0.0")

    published = registry.publish_version("jul25", "1.1.0-beta.1", changelog="beta")
    assert published.changelog == "beta"
    assert published.breaking_changes is False


def test_list_versions_newest_first(session, seed_app):
    seed_app("jul25", versions=("1.0.0", "1.1.0", "2.0.0"))
    registry = RegistryService(session)

    assert [v.version for v in registry.list_versions("jul25")] == ["2.0.0", "1.1.0", "1.0.0"]
    assert registry.get_latest_version("jul25").version == "2.0.0"
    assert registry.get_version("jul25", "1.1.0").version == "1.1.0"
    assert registry.get_version("jul25", "9.9.9") is None


def test_get_latest_version_none_without_releases(session, seed_app):
    seed_app("jul25", versions=())
    assert RegistryService(session).get_latest_version("jul25") is None


def test_promote_version_moves_only_active_installs_on_channel(session, seed_app, add_install):
    definition = seed_app("jul25", versions=("1.0.0", "1.1.0"))
    add_install("t-stable", definition, "1.0.0", channel="stable")
    add_install("t-pinned", definition, "1.0.0", channel="pinned")
    add_install("t-gone", definition, "1.0.0", channel="stable", is_active=False)

    affected = RegistryService(session).promote_version("jul25", "1.1.0", "stable")
    assert affected == 1

    rows = {
        i.tenant_id: i.installed_version
        for i in session.query(TenantAppInstall).all()
    }
    assert rows == {"t-stable": "1.1.0", "t-pinned": "1.0.0", "t-gone": "1.0.0"}


def test_set_compatibility_upserts_and_rejects_bad_patterns(session, seed_app):
    definition = seed_app("jul25")
    registry = RegistryService(session)

    compat = registry.set_compatibility("jul25", [r"^legacy-crm@1\."])
    again = registry.set_compatibility("jul25", [r"^legacy-crm@", r"^old-erp@"])
    assert again.id == compat.id
    assert registry.get_compatibility(definition.id).incompatible_with == [
        r"^legacy-crm@",
        r"^old-erp@",
    ]

    with pytest.raises(ValidationError) as exc:
        registry.set_compatibility("jul25", ["(unclosed"])
    assert exc.value.errors[0].startswith("(unclosed")
