import pytest

from appharbor.app_registry.deployment_service import DeploymentService
from appharbor.app_registry.models import TenantAppInstall
from appharbor.exceptions import DeploymentError, NotFoundError, ValidationError


def _versions(session):
    session.expire_all()
    return {
        i.tenant_id: (i.installed_version, i.channel, i.install_status)
        for i in session.query(TenantAppInstall).all()
    }


@pytest.fixture
def rollout(seed_app, add_install):
    definition = seed_app("jul25", versions=("1.0.0", "1.1.0"))
    add_install("canary-a", definition, "1.1.0", channel="canary")
    add_install("canary-b", definition, "1.1.0", channel="canary")
    add_install("stable-a", definition, "1.0.0", channel="stable")
    add_install("stable-b", definition, "1.0.0", channel="stable")
    add_install("pinned-a", definition, "1.0.0", channel="pinned")
    return definition


def test_promote_is_refused_when_any_canary_failed(session, rollout):
    failed = session.query(TenantAppInstall).filter_by(tenant_id="canary-b").one()
    failed.install_status = "failed"
    session.flush()
    before = _versions(session)

    with pytest.raises(DeploymentError) as exc:
        DeploymentService(session).promote_to_stable("jul25", "1.1.0")

    assert exc.value.message == "1 canary installs failed. Cannot promote to stable."
    assert exc.value.details["failed_tenants"] == ["canary-b"]
    assert _versions(session) == before


def test_promote_moves_stable_installs_only(session, rollout):
    result = DeploymentService(session).promote_to_stable("jul25", "1.1.0")

    assert result.affected_tenants == 2
    assert result.canary_installs == 2
    rows = _versions(session)
    assert rows["stable-a"][0] == "1.1.0"
    assert rows["stable-b"][0] == "1.1.0"
    assert rows["pinned-a"][0] == "1.0.0"


def test_rollback_filters_by_channel_and_tenants(session, rollout):
    service = DeploymentService(session)

    result = service.rollback("jul25", "1.0.0", channel="canary", tenant_ids=["canary-a"])
    assert result.affected_tenants == 1
    rows = _versions(session)
    assert rows["canary-a"] == ("1.0.0", "canary", "active")
    assert rows["canary-b"][0] == "1.1.0"

    everyone = service.rollback("jul25", "1.0.0")
    assert everyone.affected_tenants == 5

    with pytest.raises(ValidationError):
        service.rollback("jul25", "1.0.0", channel="beta")


def test_rollback_skips_uninstalled_installs(session, rollout):
    gone = session.query(TenantAppInstall).filter_by(tenant_id="stable-b").one()
    gone.is_active = False
    gone.install_status = "disabled"
    session.flush()

    result = DeploymentService(session).rollback("jul25", "1.0.0")

    assert result.affected_tenants == 4
    assert _versions(session)["stable-b"] == ("1.0.0", "stable", "disabled")


def test_promote_reaches_installs_without_definition_link(session, rollout):
    unlinked = session.query(TenantAppInstall).filter_by(tenant_id="stable-a").one()
    unlinked.app_definition_id = None
    session.flush()

    result = DeploymentService(session).promote_to_stable("jul25", "1.1.0")

    assert result.affected_tenants == 2
    assert _versions(session)["stable-a"][0] == "1.1.0"


def test_deployment_status_counts_active_installs(session, rollout):
    gone = session.query(TenantAppInstall).filter_by(tenant_id="stable-b").one()
    gone.is_active = False
    session.flush()

    status = DeploymentService(session).get_deployment_status("jul25").to_dict()

    assert status["total"] == 4
    assert status["by_channel"] == {"canary": 2, "stable": 1, "pinned": 1}
    assert status["by_version"] == {"1.1.0": 2, "1.0.0": 2}
    assert status["by_status"] == {"active": 4}
    assert [i["tenant_id"] for i in status["installs"]] == [
        "canary-a",
        "canary-b",
        "pinned-a",
        "stable-a",
    ]


def test_deploy_to_canary_marks_tenants_updating(session, rollout):
    result = DeploymentService(session).deploy_to_canary(
        "jul25", "1.1.0", ["stable-a", "stable-b"]
    )

    assert result.tenants == ["stable-a", "stable-b"]
    rows = _versions(session)
    assert rows["stable-a"] == ("1.1.0", "canary", "updating")
    assert rows["stable-b"] == ("1.1.0", "canary", "updating")


def test_deploy_to_canary_rolls_back_whole_batch(session, rollout):
    session.commit()

    with pytest.raises(NotFoundError):
        DeploymentService(session).deploy_to_canary(
            "jul25", "1.1.0", ["stable-a", "no-such-tenant"]
        )

    rows = _versions(session)
    assert rows["stable-a"] == ("1.0.0", "stable", "active")
