from __future__ import annotations

import uuid
from datetime import datetime, timedelta

import pytest

from appharbor.app_registry.models import TenantAppInstall
from appharbor.app_registry.registry_service import RegistryService
from appharbor.database import create_db_engine, import_all_models, make_sessionmaker
from appharbor.models.base import Base

RELEASE_BASE = datetime(2025, 1, 1, 12, 0, 0)


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite:///:memory:")
    import_all_models()
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session(engine):
    db = make_sessionmaker(engine)()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def seed_app(session):
    """Create a definition and publish `versions` one day apart, oldest first."""

    def _seed(key="jul25", versions=("1.0.0",), **fields):
        registry = RegistryService(session)
        fields.setdefault("name", key.replace("-", " ").title())
        definition = registry.create_definition(key=key, **fields)
        for offset, version in enumerate(versions):
            registry.publish_version(
                key, version, released_at=RELEASE_BASE + timedelta(days=offset)
            )
        return definition

    return _seed


@pytest.fixture()
def add_install(session):
    """Insert an install row directly, bypassing the preflight gate."""

    def _add(tenant_id, definition, version="1.0.0", **fields):
        install = TenantAppInstall(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            key=definition.key,
            name=definition.name,
            app_definition_id=definition.id,
            installed_version=version,
            channel=fields.pop("channel", "stable"),
            install_status=fields.pop("install_status", "active"),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        session.add(install)
        session.flush()
        return install

    return _add
