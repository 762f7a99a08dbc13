"""
Tenant Apps Service
Tenant-level app installation and configuration management.

install/update are gated by a passing preflight; config, overrides and
channel changes are not version changes and skip the gate.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from appharbor.app_registry.compatibility_service import LATEST, CompatibilityService
from appharbor.app_registry.mcp_registry_service import (
    McpActionRegistryService,
    best_effort,
)
from appharbor.app_registry.models import (
    AppChannel,
    AppDefinition,
    InstallStatus,
    TenantAppInstall,
    utcnow,
)
from appharbor.app_registry.registry_service import RegistryService
from appharbor.app_registry.schemas import validate_config, validate_overrides
from appharbor.config import get_settings
from appharbor.exceptions import (
    CompatibilityError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_CHANNELS = {c.value for c in AppChannel}


@dataclass
class InstallResult:
    install: TenantAppInstall
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"install": self.install.to_dict(), "warnings": list(self.warnings)}


def _check_channel(channel: str) -> str:
    if channel not in _CHANNELS:
        raise ValidationError(
            f"Invalid channel '{channel}'. Expected one of: {', '.join(sorted(_CHANNELS))}",
            field="channel",
        )
    return channel


class TenantAppsService:
    def __init__(
        self,
        session: Session,
        registry: Optional[RegistryService] = None,
        compatibility: Optional[CompatibilityService] = None,
        mcp_registry: Optional[McpActionRegistryService] = None,
    ):
        self.session = session
        self.registry = registry or RegistryService(session)
        self.compatibility = compatibility or CompatibilityService(
            session, registry=self.registry
        )
        self.mcp_registry = mcp_registry or McpActionRegistryService(session)

    def install(
        self,
        tenant_id: str,
        app_key: str,
        version: Optional[str] = None,
        channel: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> InstallResult:
        channel = _check_channel(channel or AppChannel.STABLE.value)
        clean_config = validate_config(config)
        definition = self.registry.get_definition_by_key(app_key)

        check = self.compatibility.preflight(tenant_id, app_key, version or LATEST)
        if not check.ok:
            raise CompatibilityError("install", check)

        existing = self._find_install(tenant_id, app_key, lock=True)
        if existing is not None and existing.is_active:
            raise ConflictError(
                f"App '{app_key}' is already installed for tenant",
                tenant_id=tenant_id,
                key=app_key,
            )

        target_version = version if version and version != LATEST else None
        if not target_version:
            latest = self.registry.get_latest_version(app_key)
            target_version = (
                latest.version if latest else get_settings().DEFAULT_INSTALL_VERSION
            )

        now = utcnow()
        install = existing
        if install is None:
            install = TenantAppInstall(
                id=str(uuid.uuid4()), tenant_id=tenant_id, key=app_key
            )
            self.session.add(install)

        install.name = definition.name
        install.description = definition.description
        install.icon_name = definition.icon_name
        install.app_definition_id = definition.id
        install.installed_version = target_version
        install.channel = channel
        install.install_status = InstallStatus.ACTIVE.value
        install.config = clean_config
        install.overrides = {}
        install.domain_tables = list(definition.domain_tables or [])
        install.is_active = True
        install.last_updated_at = now
        install.updated_by = user_id
        self.session.flush()

        warnings = list(check.warnings)
        warning = self._register_actions(tenant_id, definition, user_id)
        if warning:
            warnings.append(warning)

        logger.info("Installed %s@%s for tenant %s", app_key, target_version, tenant_id)
        return InstallResult(install=install, warnings=warnings)

    def update(
        self,
        tenant_id: str,
        app_key: str,
        target_version: str,
        user_id: Optional[str] = None,
    ) -> InstallResult:
        check = self.compatibility.preflight(tenant_id, app_key, target_version)
        if not check.ok:
            raise CompatibilityError("update", check)

        install = self._get_install(tenant_id, app_key, lock=True, active_only=True)
        if target_version == LATEST:
            latest = self.registry.get_latest_version(app_key)
            target_version = latest.version

        definition = install.app_definition or self.registry.get_definition_by_key(app_key)
        now = utcnow()
        install.installed_version = target_version
        install.install_status = InstallStatus.ACTIVE.value
        install.domain_tables = list(definition.domain_tables or [])
        install.last_updated_at = now
        install.updated_by = user_id
        self.session.flush()

        warnings = list(check.warnings)
        warning = self._register_actions(tenant_id, definition, user_id)
        if warning:
            warnings.append(warning)

        logger.info("Updated %s to %s for tenant %s", app_key, target_version, tenant_id)
        return InstallResult(install=install, warnings=warnings)

    def set_config(
        self, tenant_id: str, app_key: str, config: Dict[str, Any]
    ) -> TenantAppInstall:
        clean = validate_config(config)
        install = self._get_install(tenant_id, app_key, lock=True)
        install.config = clean
        install.last_updated_at = utcnow()
        self.session.flush()
        return install

    def set_overrides(
        self, tenant_id: str, app_key: str, overrides: Dict[str, Any]
    ) -> TenantAppInstall:
        clean = validate_overrides(overrides)
        install = self._get_install(tenant_id, app_key, lock=True)
        install.overrides = clean
        install.last_updated_at = utcnow()
        self.session.flush()
        return install

    def set_channel(self, tenant_id: str, app_key: str, channel: str) -> TenantAppInstall:
        _check_channel(channel)
        install = self._get_install(tenant_id, app_key, lock=True)
        install.channel = channel
        install.last_updated_at = utcnow()
        self.session.flush()
        return install

    def list_installed(self, tenant_id: str) -> List[TenantAppInstall]:
        return (
            self.session.query(TenantAppInstall)
            .options(joinedload(TenantAppInstall.app_definition))
            .filter(
                TenantAppInstall.tenant_id == tenant_id,
                TenantAppInstall.is_active.is_(True),
            )
            .order_by(TenantAppInstall.name)
            .all()
        )

    def get_installed(self, tenant_id: str, app_key: str) -> TenantAppInstall:
        install = (
            self.session.query(TenantAppInstall)
            .options(joinedload(TenantAppInstall.app_definition))
            .filter_by(tenant_id=tenant_id, key=app_key)
            .first()
        )
        if not install:
            raise NotFoundError("Installed app", app_key, tenant_id=tenant_id)
        return install

    def uninstall(self, tenant_id: str, app_key: str) -> InstallResult:
        install = self._get_install(tenant_id, app_key, lock=True)
        install.is_active = False
        install.install_status = InstallStatus.DISABLED.value
        install.last_updated_at = utcnow()
        self.session.flush()

        warnings = []
        warning = best_effort(
            self.session,
            "MCP action deregistration",
            self.mcp_registry.disable_tenant_app_actions,
            tenant_id,
            app_key,
        )
        if warning:
            warnings.append(warning)

        logger.info("Uninstalled %s for tenant %s", app_key, tenant_id)
        return InstallResult(install=install, warnings=warnings)

    def _register_actions(
        self, tenant_id: str, definition: AppDefinition, user_id: Optional[str]
    ) -> Optional[str]:
        actions = list(definition.mcp_actions or [])
        if not actions:
            return None
        return best_effort(
            self.session,
            "MCP action registration",
            self.mcp_registry.register_tenant_actions,
            tenant_id,
            definition.key,
            actions,
            user_id or "system",
        )

    def _find_install(
        self, tenant_id: str, app_key: str, *, lock: bool = False
    ) -> Optional[TenantAppInstall]:
        q = self.session.query(TenantAppInstall).filter_by(
            tenant_id=tenant_id, key=app_key
        )
        if lock:
            q = q.with_for_update()
        return q.first()

    def _get_install(
        self, tenant_id: str, app_key: str, *, lock: bool = False, active_only: bool = False
    ) -> TenantAppInstall:
        install = self._find_install(tenant_id, app_key, lock=lock)
        # Uninstalled rows only come back through install()
        if not install or (active_only and not install.is_active):
            raise NotFoundError("Installed app", app_key, tenant_id=tenant_id)
        return install
