"""
Runtime Loader
Assembles the effective runtime context of a tenant app: definition, install,
merged config, overrides and active extensions.

Extensions are resolved through ExtensionRegistry, a closed lookup table of
implementations registered in-process. Runtime strings are never imported.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from appharbor.app_registry.models import (
    AppDefinition,
    InstallStatus,
    TenantAppExtension,
    TenantAppInstall,
)
from appharbor.config import get_settings
from appharbor.exceptions import ExtensionSecurityError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MERGED_SECTIONS = ("features", "branding", "ui_overrides", "integrations", "limits")


def merge_config(
    defaults: Optional[Dict[str, Any]], overrides: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """
    Effective config = defaults merged with overrides.

    Top-level keys: override wins. Each named section is shallow-merged on its
    own, so keys only present in the defaults survive.
    """
    defaults = defaults or {}
    overrides = overrides or {}
    merged: Dict[str, Any] = {**defaults, **overrides}
    for section in MERGED_SECTIONS:
        merged[section] = {
            **(defaults.get(section) or {}),
            **(overrides.get(section) or {}),
        }
    return merged


def is_feature_enabled(config: Dict[str, Any], feature_key: str) -> bool:
    return (config.get("features") or {}).get(feature_key) is True


def get_feature_value(config: Dict[str, Any], feature_key: str, default: Any = None) -> Any:
    features = config.get("features") or {}
    if feature_key in features and features[feature_key] is not None:
        return features[feature_key]
    return default


class ExtensionRegistry:
    """Trusted implementation path -> in-process implementation object."""

    def __init__(self, prefix: Optional[str] = None):
        self._prefix = prefix
        self._implementations: Dict[str, Any] = {}
        self._lock = threading.RLock()

    @property
    def prefix(self) -> str:
        return self._prefix or get_settings().EXTENSION_PATH_PREFIX

    def is_trusted(self, implementation_url: str) -> bool:
        return bool(implementation_url) and implementation_url.startswith(self.prefix)

    def register(self, implementation_url: str, implementation: Any) -> None:
        if not self.is_trusted(implementation_url):
            raise ValidationError(
                f"Extension path must start with {self.prefix}",
                field="implementation_url",
            )
        with self._lock:
            self._implementations[implementation_url] = implementation

    def unregister(self, implementation_url: str) -> None:
        with self._lock:
            self._implementations.pop(implementation_url, None)

    def resolve(self, implementation_url: str) -> Optional[Any]:
        with self._lock:
            return self._implementations.get(implementation_url)

    def list_paths(self) -> List[str]:
        with self._lock:
            return sorted(self._implementations)


extension_registry = ExtensionRegistry()


@dataclass
class AppContext:
    definition: AppDefinition
    install: TenantAppInstall
    config: Dict[str, Any]
    overrides: Dict[str, Any]
    extensions: List[TenantAppExtension] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "definition": self.definition.to_dict(),
            "install": self.install.to_dict(),
            "config": self.config,
            "overrides": self.overrides,
            "extensions": [e.to_dict() for e in self.extensions],
        }


@dataclass
class LoadedExtension:
    extension_key: str
    implementation: Any
    config: Dict[str, Any]


class RuntimeLoader:
    def __init__(self, session: Session, registry: Optional[ExtensionRegistry] = None):
        self.session = session
        self.extensions = registry or extension_registry

    def load_app_context(self, tenant_id: str, app_key: str) -> AppContext:
        install = (
            self.session.query(TenantAppInstall)
            .options(joinedload(TenantAppInstall.app_definition))
            .filter_by(tenant_id=tenant_id, key=app_key)
            .first()
        )
        if not install or not install.is_active or install.app_definition is None:
            raise NotFoundError("Installed app", app_key, tenant_id=tenant_id)

        if install.install_status != InstallStatus.ACTIVE.value:
            raise ValidationError(
                f"App '{app_key}' is not active (status: {install.install_status})",
                field="install_status",
            )

        definition = install.app_definition
        extensions = (
            self.session.query(TenantAppExtension)
            .filter(
                TenantAppExtension.tenant_id == tenant_id,
                TenantAppExtension.app_definition_id == definition.id,
                TenantAppExtension.is_active.is_(True),
            )
            .order_by(TenantAppExtension.extension_key)
            .all()
        )

        defaults = (definition.extension_points or {}).get("default_config") or {}
        return AppContext(
            definition=definition,
            install=install,
            config=merge_config(defaults, install.config),
            overrides=dict(install.overrides or {}),
            extensions=extensions,
        )

    def get_extension(
        self, tenant_id: str, app_definition_id: str, extension_key: str
    ) -> Optional[TenantAppExtension]:
        return (
            self.session.query(TenantAppExtension)
            .filter_by(
                tenant_id=tenant_id,
                app_definition_id=app_definition_id,
                extension_key=extension_key,
                is_active=True,
            )
            .first()
        )

    def load_extension(
        self, tenant_id: str, app_definition_id: str, extension_key: str
    ) -> Optional[LoadedExtension]:
        ext = self.get_extension(tenant_id, app_definition_id, extension_key)
        if not ext:
            return None

        if not self.extensions.is_trusted(ext.implementation_url):
            raise ExtensionSecurityError(ext.implementation_url, self.extensions.prefix)

        implementation = self.extensions.resolve(ext.implementation_url)
        if implementation is None:
            logger.error(
                "Failed to load extension %s: no implementation registered for %s",
                extension_key,
                ext.implementation_url,
            )
            return None

        return LoadedExtension(
            extension_key=extension_key,
            implementation=implementation,
            config=dict(ext.config or {}),
        )
