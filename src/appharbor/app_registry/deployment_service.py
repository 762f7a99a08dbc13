"""
Deployment Service
Canary deployments, promotion to stable and rollbacks.

Multi-row writes run as one unit of work inside a SAVEPOINT: either every row
of the batch changes or none does.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from appharbor.app_registry.models import (
    AppChannel,
    InstallStatus,
    TenantAppInstall,
    utcnow,
)
from appharbor.app_registry.registry_service import RegistryService
from appharbor.exceptions import DeploymentError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class PromotionResult:
    app_key: str
    version: str
    canary_installs: int
    affected_tenants: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "app_key": self.app_key,
            "version": self.version,
            "canary_installs": self.canary_installs,
            "affected_tenants": self.affected_tenants,
            "message": self.message,
        }


@dataclass
class RollbackResult:
    app_key: str
    version: str
    affected_tenants: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "app_key": self.app_key,
            "version": self.version,
            "affected_tenants": self.affected_tenants,
            "message": self.message,
        }


@dataclass
class CanaryDeployment:
    app_key: str
    version: str
    tenants: List[str]
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "app_key": self.app_key,
            "version": self.version,
            "tenants": list(self.tenants),
            "message": self.message,
        }


@dataclass
class DeploymentStatus:
    app_key: str
    total: int = 0
    by_channel: Dict[str, int] = field(default_factory=dict)
    by_version: Dict[str, int] = field(default_factory=dict)
    by_status: Dict[str, int] = field(default_factory=dict)
    installs: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_key": self.app_key,
            "total": self.total,
            "by_channel": dict(self.by_channel),
            "by_version": dict(self.by_version),
            "by_status": dict(self.by_status),
            "installs": list(self.installs),
        }


class DeploymentService:
    def __init__(self, session: Session, registry: Optional[RegistryService] = None):
        self.session = session
        self.registry = registry or RegistryService(session)

    def promote_to_stable(self, app_key: str, version: str) -> PromotionResult:
        """
        Refuse unless every canary install of `version` is healthy, then move
        all active stable installs to `version`.
        """
        with self.session.begin_nested():
            canary_installs = (
                self.session.query(TenantAppInstall)
                .filter(
                    TenantAppInstall.key == app_key,
                    TenantAppInstall.channel == AppChannel.CANARY.value,
                    TenantAppInstall.installed_version == version,
                )
                .with_for_update()
                .all()
            )
            failed = [
                i for i in canary_installs
                if i.install_status == InstallStatus.FAILED.value
            ]
            if failed:
                raise DeploymentError(
                    f"{len(failed)} canary installs failed. Cannot promote to stable.",
                    app_key=app_key,
                    version=version,
                    failed_tenants=[i.tenant_id for i in failed],
                )

            affected = self.registry.promote_version(
                app_key, version, AppChannel.STABLE.value
            )

        logger.info("Promoted %s@%s to stable (%d tenants)", app_key, version, affected)
        return PromotionResult(
            app_key=app_key,
            version=version,
            canary_installs=len(canary_installs),
            affected_tenants=affected,
            message=f"Successfully promoted {app_key}@{version} to stable",
        )

    def rollback(
        self,
        app_key: str,
        target_version: str,
        channel: Optional[str] = None,
        tenant_ids: Optional[List[str]] = None,
    ) -> RollbackResult:
        if channel is not None and channel not in {c.value for c in AppChannel}:
            raise ValidationError(f"Invalid channel '{channel}'", field="channel")

        q = self.session.query(TenantAppInstall).filter(
            TenantAppInstall.key == app_key,
            TenantAppInstall.is_active.is_(True),
        )
        if channel:
            q = q.filter(TenantAppInstall.channel == channel)
        if tenant_ids:
            q = q.filter(TenantAppInstall.tenant_id.in_(list(tenant_ids)))

        now = utcnow()
        affected = q.update(
            {
                TenantAppInstall.installed_version: target_version,
                TenantAppInstall.install_status: InstallStatus.ACTIVE.value,
                TenantAppInstall.last_updated_at: now,
                TenantAppInstall.updated_at: now,
            },
            synchronize_session="fetch",
        )
        self.session.flush()

        logger.info(
            "Rolled back %s to %s (%d tenants affected)", app_key, target_version, affected
        )
        return RollbackResult(
            app_key=app_key,
            version=target_version,
            affected_tenants=affected,
            message=f"Successfully rolled back {app_key} to {target_version}",
        )

    def get_deployment_status(self, app_key: str) -> DeploymentStatus:
        installs = (
            self.session.query(TenantAppInstall)
            .filter(
                TenantAppInstall.key == app_key,
                TenantAppInstall.is_active.is_(True),
            )
            .order_by(TenantAppInstall.tenant_id)
            .all()
        )

        return DeploymentStatus(
            app_key=app_key,
            total=len(installs),
            by_channel=dict(Counter(i.channel for i in installs)),
            by_version=dict(Counter(i.installed_version for i in installs)),
            by_status=dict(Counter(i.install_status for i in installs)),
            installs=[
                {
                    "tenant_id": i.tenant_id,
                    "channel": i.channel,
                    "installed_version": i.installed_version,
                    "install_status": i.install_status,
                }
                for i in installs
            ],
        )

    def deploy_to_canary(
        self, app_key: str, version: str, tenant_ids: List[str]
    ) -> CanaryDeployment:
        definition = self.registry.get_definition_by_key(app_key)
        now = utcnow()

        with self.session.begin_nested():
            for tenant_id in tenant_ids:
                install = (
                    self.session.query(TenantAppInstall)
                    .filter_by(tenant_id=tenant_id, key=app_key)
                    .with_for_update()
                    .first()
                )
                if not install:
                    raise NotFoundError("Installed app", app_key, tenant_id=tenant_id)
                install.app_definition_id = definition.id
                install.installed_version = version
                install.channel = AppChannel.CANARY.value
                install.install_status = InstallStatus.UPDATING.value
                install.last_updated_at = now
                self.session.flush()

        logger.info(
            "Deployed %s@%s to %d canary tenants", app_key, version, len(tenant_ids)
        )
        return CanaryDeployment(
            app_key=app_key,
            version=version,
            tenants=list(tenant_ids),
            message=f"Deployed to {len(tenant_ids)} canary tenants",
        )
