"""
App Registry Models
Platform app definitions, published versions, tenant installs and extensions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from appharbor.models.base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; all registry timestamps are stored naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _json():
    return JSON().with_variant(JSONB, "postgresql")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class AppType(str, Enum):
    CORE = "core"
    ADDON = "addon"
    CUSTOM = "custom"


class AppChannel(str, Enum):
    STABLE = "stable"
    CANARY = "canary"
    PINNED = "pinned"


class InstallStatus(str, Enum):
    ACTIVE = "active"
    INSTALLING = "installing"
    UPDATING = "updating"
    FAILED = "failed"
    DISABLED = "disabled"


class ExtensionType(str, Enum):
    COMPONENT = "component"
    FUNCTION = "function"
    ADAPTER = "adapter"
    HOOK = "hook"


class AppDefinition(Base):
    """
    Platform-level catalog entry for an installable app.
    Never physically deleted; deactivated via is_active.
    """

    __tablename__ = "app_definitions"

    id = Column(String, primary_key=True)
    key = Column(String(100), unique=True, nullable=False, index=True)  # kebab-case slug
    name = Column(String(200), nullable=False)
    app_type = Column(String(20), nullable=False, default=AppType.CUSTOM.value)
    description = Column(Text, nullable=True)
    icon_name = Column(String(100), default="Package")

    routes = Column(_json(), default=list)
    modules = Column(_json(), default=list)
    # {"default_config": {...}, "<point>": {...}}
    extension_points = Column(_json(), default=dict)
    schema_version = Column(String(50), default="1.0.0")

    # Manifest-derived shape
    domain_tables = Column(_json(), default=list)
    shared_tables = Column(_json(), default=list)
    hooks = Column(_json(), default=list)
    ui_components = Column(_json(), default=list)
    capabilities = Column(_json(), default=list)
    integration_requirements = Column(_json(), default=dict)
    # [{"key": "...", "version": "...", "input_schema": {...}, ...}]
    mcp_actions = Column(_json(), default=list)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    versions = relationship(
        "AppVersion",
        back_populates="definition",
        cascade="all, delete-orphan",
        order_by="AppVersion.released_at.desc()",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "app_type": self.app_type,
            "description": self.description,
            "icon_name": self.icon_name,
            "routes": list(self.routes or []),
            "modules": list(self.modules or []),
            "extension_points": dict(self.extension_points or {}),
            "schema_version": self.schema_version,
            "domain_tables": list(self.domain_tables or []),
            "shared_tables": list(self.shared_tables or []),
            "hooks": list(self.hooks or []),
            "ui_components": list(self.ui_components or []),
            "capabilities": list(self.capabilities or []),
            "integration_requirements": dict(self.integration_requirements or {}),
            "mcp_actions": list(self.mcp_actions or []),
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AppVersion(Base):
    """One published release of an AppDefinition."""

    __tablename__ = "app_versions"

    id = Column(String, primary_key=True)
    app_definition_id = Column(
        String,
        ForeignKey("app_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version = Column(String(50), nullable=False)  # semver
    manifest_url = Column(String(500), nullable=True)
    changelog = Column(Text, nullable=True)
    migrations = Column(_json(), default=list)
    breaking_changes = Column(Boolean, default=False, nullable=False)

    released_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    deprecated_at = Column(DateTime, nullable=True)
    end_of_life_at = Column(DateTime, nullable=True)

    definition = relationship("AppDefinition", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("app_definition_id", "version", name="uq_app_version"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "app_definition_id": self.app_definition_id,
            "version": self.version,
            "manifest_url": self.manifest_url,
            "changelog": self.changelog,
            "migrations": list(self.migrations or []),
            "breaking_changes": bool(self.breaking_changes),
            "released_at": _iso(self.released_at),
            "deprecated_at": _iso(self.deprecated_at),
            "end_of_life_at": _iso(self.end_of_life_at),
        }


class TenantAppInstall(Base):
    """
    A tenant's installation of an app definition.
    One row per (tenant_id, key); uninstall only disables the row.
    """

    __tablename__ = "applications"

    id = Column(String, primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    key = Column(String(100), nullable=False, index=True)

    # Denormalized from the definition at install time
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    icon_name = Column(String(100), nullable=True)
    app_definition_id = Column(
        String, ForeignKey("app_definitions.id"), nullable=True, index=True
    )

    installed_version = Column(String(50), nullable=True)
    channel = Column(String(20), nullable=False, default=AppChannel.STABLE.value)
    install_status = Column(
        String(20), nullable=False, default=InstallStatus.ACTIVE.value
    )

    config = Column(_json(), default=dict)
    overrides = Column(_json(), default=dict)
    # Definition domain_tables as of the last install/update
    domain_tables = Column(_json(), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    last_updated_at = Column(DateTime, nullable=True)
    updated_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    app_definition = relationship("AppDefinition")

    __table_args__ = (
        UniqueConstraint("tenant_id", "key", name="uq_tenant_app_key"),
    )

    def to_dict(self, *, include_definition: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "icon_name": self.icon_name,
            "app_definition_id": self.app_definition_id,
            "installed_version": self.installed_version,
            "channel": self.channel,
            "install_status": self.install_status,
            "config": dict(self.config or {}),
            "overrides": dict(self.overrides or {}),
            "domain_tables": list(self.domain_tables or []),
            "is_active": self.is_active,
            "last_updated_at": _iso(self.last_updated_at),
            "updated_by": self.updated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_definition:
            data["app_definition"] = (
                self.app_definition.to_dict() if self.app_definition else None
            )
        return data


class AppCompatibility(Base):
    """
    Compatibility matrix for a definition.
    incompatible_with holds regular expressions matched against "key@version".
    """

    __tablename__ = "app_compatibility"

    id = Column(String, primary_key=True)
    app_definition_id = Column(
        String,
        ForeignKey("app_definitions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    incompatible_with = Column(_json(), default=list)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TenantAppExtension(Base):
    """Tenant-scoped add-on resolved at runtime-context build time."""

    __tablename__ = "tenant_app_extensions"

    id = Column(String, primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    app_definition_id = Column(
        String,
        ForeignKey("app_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    extension_type = Column(
        String(20), nullable=False, default=ExtensionType.COMPONENT.value
    )
    extension_key = Column(String(100), nullable=False)
    implementation_url = Column(String(500), nullable=False)
    config = Column(_json(), default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "app_definition_id",
            "extension_key",
            name="uq_tenant_app_extension",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "app_definition_id": self.app_definition_id,
            "extension_type": self.extension_type,
            "extension_key": self.extension_key,
            "implementation_url": self.implementation_url,
            "config": dict(self.config or {}),
            "is_active": self.is_active,
        }


class McpActionRegistryEntry(Base):
    """MCP action exposed by an installed app, per tenant and version."""

    __tablename__ = "mcp_action_registry"

    id = Column(String, primary_key=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    app_key = Column(String(100), nullable=False, index=True)
    action_key = Column(String(100), nullable=False)
    fq_action = Column(String(200), nullable=False)  # "{app_key}.{action_key}"
    version = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    input_schema = Column(_json(), nullable=True)
    output_schema = Column(_json(), nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    created_by = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "fq_action", "version", name="uq_mcp_action_version"
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "app_key": self.app_key,
            "action_key": self.action_key,
            "fq_action": self.fq_action,
            "version": self.version,
            "description": self.description,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
            "enabled": self.enabled,
            "created_at": _iso(self.created_at),
            "created_by": self.created_by,
        }


class McpActionLog(Base):
    """Audit record for each executed MCP action."""

    __tablename__ = "mcp_action_logs"

    id = Column(String, primary_key=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(64), nullable=True)
    action = Column(String(200), nullable=False)
    payload = Column(_json(), nullable=True)
    result = Column(_json(), nullable=True)
    status = Column(String(20), nullable=False)  # success | error
    duration_ms = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    idempotency_key = Column(String(200), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
