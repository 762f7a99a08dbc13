from unittest.mock import MagicMock

import pytest

from appharbor.app_registry.mcp_registry_service import McpActionRegistryService
from appharbor.app_registry.models import McpActionRegistryEntry, TenantAppInstall
from appharbor.app_registry.registry_service import RegistryService
from appharbor.app_registry.schemas import CompatibilityCheck
from appharbor.app_registry.tenant_apps_service import TenantAppsService
from appharbor.exceptions import (
    CompatibilityError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

TENANT = "tenant-123"

MCP_ACTIONS = [
    {
        "key": "score_supplier",
        "version": "1.0.0",
        "description": "Score a supplier",
        "input_schema": {"type": "object", "required": ["supplier_id"]},
    }
]


def test_install_inserts_active_row(session, seed_app):
    seed_app("jul25", versions=("1.0.0",))

    result = TenantAppsService(session).install(TENANT, "jul25", version="1.0.0")

    install = result.install
    assert result.warnings == []
    assert (install.tenant_id, install.key) == (TENANT, "jul25")
    assert install.installed_version == "1.0.0"
    assert install.channel == "stable"
    assert install.install_status == "active"
    assert install.is_active is True
    assert install.name == "Jul25"


def test_install_defaults_to_latest_version(session, seed_app):
    seed_app("jul25", versions=("1.0.0", "1.2.0"))

    result = TenantAppsService(session).install(TENANT, "jul25")

    assert result.install.installed_version == "1.2.0"


def test_install_unknown_app_raises_not_found(session):
    with pytest.raises(NotFoundError):
        TenantAppsService(session).install(TENANT, "ghost")


def test_install_twice_is_a_conflict(session, seed_app):
    seed_app("jul25")
    service = TenantAppsService(session)
    service.install(TENANT, "jul25")

    with pytest.raises(ConflictError):
        service.install(TENANT, "jul25")
    assert session.query(TenantAppInstall).count() == 1


def test_reinstall_after_uninstall_reactivates_same_row(session, seed_app):
    seed_app("jul25", versions=("1.0.0", "1.1.0"))
    service = TenantAppsService(session)
    first = service.install(TENANT, "jul25", version="1.0.0").install
    service.uninstall(TENANT, "jul25")

    again = service.install(TENANT, "jul25", channel="canary").install

    assert again.id == first.id
    assert again.is_active is True
    assert again.install_status == "active"
    assert again.installed_version == "1.1.0"
    assert again.channel == "canary"
    active = session.query(TenantAppInstall).filter_by(tenant_id=TENANT, key="jul25")
    assert active.count() == 1


def test_install_rejects_invalid_channel_and_config(session, seed_app):
    seed_app("jul25")
    service = TenantAppsService(session)

    with pytest.raises(ValidationError):
        service.install(TENANT, "jul25", channel="beta")
    with pytest.raises(ValidationError):
        service.install(TENANT, "jul25", config={"features": {"scoring": [1, 2]}})


class TestPreflightGate:
    @pytest.fixture
    def mock_session(self):
        return MagicMock()

    @pytest.fixture
    def failing_compat(self):
        compat = MagicMock()
        compat.preflight.return_value = CompatibilityCheck(
            ok=False,
            reasons=["Incompatible with legacy-crm@1.4.0", "This version has reached end of life"],
        )
        return compat

    def test_install_does_not_write_when_preflight_fails(self, mock_session, failing_compat):
        service = TenantAppsService(
            mock_session,
            registry=MagicMock(),
            compatibility=failing_compat,
            mcp_registry=MagicMock(),
        )

        with pytest.raises(CompatibilityError) as exc:
            service.install(TENANT, "jul25", version="1.0.0")

        assert exc.value.message == (
            "Cannot install: Incompatible with legacy-crm@1.4.0, "
            "This version has reached end of life"
        )
        mock_session.add.assert_not_called()
        mock_session.flush.assert_not_called()
        mock_session.query.assert_not_called()

    def test_update_does_not_write_when_preflight_fails(self, mock_session, failing_compat):
        service = TenantAppsService(
            mock_session,
            registry=MagicMock(),
            compatibility=failing_compat,
            mcp_registry=MagicMock(),
        )

        with pytest.raises(CompatibilityError):
            service.update(TENANT, "jul25", "2.0.0")

        mock_session.flush.assert_not_called()
        mock_session.query.assert_not_called()


def test_install_succeeds_when_mcp_registration_fails(session, seed_app):
    seed_app("jul25", mcp_actions=MCP_ACTIONS)
    mcp_registry = MagicMock()
    mcp_registry.register_tenant_actions.side_effect = RuntimeError("registry offline")

    result = TenantAppsService(session, mcp_registry=mcp_registry).install(TENANT, "jul25")

    assert result.warnings == ["MCP action registration failed: registry offline"]
    row = session.query(TenantAppInstall).filter_by(tenant_id=TENANT, key="jul25").one()
    assert row.install_status == "active"


def test_install_registers_declared_mcp_actions(session, seed_app):
    seed_app("jul25", mcp_actions=MCP_ACTIONS)

    TenantAppsService(session).install(TENANT, "jul25", user_id="user-1")

    entry = session.query(McpActionRegistryEntry).one()
    assert entry.fq_action == "jul25.score_supplier"
    assert entry.enabled is True
    assert entry.created_by == "user-1"


def test_update_moves_version_and_resolves_latest(session, seed_app):
    definition = seed_app("jul25", versions=("1.0.0",))
    service = TenantAppsService(session)
    service.install(TENANT, "jul25", version="1.0.0")
    RegistryService(session).publish_version(definition.key, "1.1.0")

    result = service.update(TENANT, "jul25", "latest", user_id="user-9")

    assert result.install.installed_version == "1.1.0"
    assert result.install.updated_by == "user-9"
    assert result.install.last_updated_at is not None


def test_update_missing_install_raises_not_found(session, seed_app):
    seed_app("jul25")

    with pytest.raises(NotFoundError):
        TenantAppsService(session).update(TENANT, "jul25", "1.0.0")


def test_update_after_uninstall_raises_not_found(session, seed_app):
    seed_app("jul25", versions=("1.0.0", "1.1.0"))
    service = TenantAppsService(session)
    service.install(TENANT, "jul25", version="1.0.0")
    service.uninstall(TENANT, "jul25")

    with pytest.raises(NotFoundError):
        service.update(TENANT, "jul25", "1.1.0")

    row = session.query(TenantAppInstall).filter_by(tenant_id=TENANT, key="jul25").one()
    assert (row.is_active, row.install_status, row.installed_version) == (
        False,
        "disabled",
        "1.0.0",
    )


def test_set_config_overrides_and_channel(session, seed_app):
    seed_app("jul25")
    service = TenantAppsService(session)
    service.install(TENANT, "jul25")

    install = service.set_config(
        TENANT, "jul25", {"features": {"scoring": True}, "branding": {"primary_color": "#0a0"}}
    )
    assert install.config == {
        "features": {"scoring": True},
        "branding": {"primary_color": "#0a0"},
    }

    install = service.set_overrides(TENANT, "jul25", {"forms": [{"id": "intake"}]})
    assert install.overrides == {"forms": [{"id": "intake"}]}

    install = service.set_channel(TENANT, "jul25", "pinned")
    assert install.channel == "pinned"

    with pytest.raises(ValidationError):
        service.set_channel(TENANT, "jul25", "nightly")
    with pytest.raises(ValidationError):
        service.set_overrides(TENANT, "jul25", {"forms": "not-a-list"})
    with pytest.raises(NotFoundError):
        service.set_config("other-tenant", "jul25", {})


def test_list_installed_hides_uninstalled(session, seed_app):
    seed_app("jul25")
    seed_app("crm-lite")
    service = TenantAppsService(session)
    service.install(TENANT, "jul25")
    service.install(TENANT, "crm-lite")
    service.uninstall(TENANT, "crm-lite")

    assert [i.key for i in service.list_installed(TENANT)] == ["jul25"]
    assert service.get_installed(TENANT, "crm-lite").install_status == "disabled"


def test_uninstall_disables_mcp_actions(session, seed_app):
    seed_app("jul25", mcp_actions=MCP_ACTIONS)
    service = TenantAppsService(session)
    service.install(TENANT, "jul25")

    result = service.uninstall(TENANT, "jul25")

    assert result.install.is_active is False
    assert result.warnings == []
    actions = McpActionRegistryService(session).list_actions(TENANT, app_key="jul25")
    assert [a.enabled for a in actions] == [False]
