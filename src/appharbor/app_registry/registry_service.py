"""
App Registry Service
Platform-level management of app definitions and versions.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from appharbor.app_registry.models import (
    AppCompatibility,
    AppDefinition,
    AppVersion,
    TenantAppInstall,
    utcnow,
)
from appharbor.app_registry.schemas import SEMVER_PATTERN
from appharbor.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(SEMVER_PATTERN)

_UPDATABLE_FIELDS = {
    "name",
    "app_type",
    "description",
    "icon_name",
    "routes",
    "modules",
    "extension_points",
    "schema_version",
    "domain_tables",
    "shared_tables",
    "hooks",
    "ui_components",
    "capabilities",
    "integration_requirements",
    "mcp_actions",
    "is_active",
}


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class RegistryService:
    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def list_definitions(
        self, app_type: Optional[str] = None, is_active: Optional[bool] = None
    ) -> List[AppDefinition]:
        q = self.session.query(AppDefinition)
        if app_type:
            q = q.filter(AppDefinition.app_type == app_type)
        if is_active is not None:
            q = q.filter(AppDefinition.is_active.is_(is_active))
        return q.order_by(AppDefinition.name).all()

    def find_definition(self, key: str) -> Optional[AppDefinition]:
        return self.session.query(AppDefinition).filter_by(key=key).first()

    def get_definition_by_key(self, key: str) -> AppDefinition:
        definition = self.find_definition(key)
        if not definition:
            raise NotFoundError("App definition", key)
        return definition

    def get_definition_by_id(self, definition_id: str) -> AppDefinition:
        definition = self.session.get(AppDefinition, definition_id)
        if not definition:
            raise NotFoundError("App definition", definition_id)
        return definition

    def create_definition(self, **fields: Any) -> AppDefinition:
        key = fields.get("key")
        if not key or not fields.get("name"):
            raise ValidationError("key and name are required", field="key")
        if self.find_definition(key):
            raise ConflictError(f"App definition '{key}' already exists", key=key)

        unknown = set(fields) - _UPDATABLE_FIELDS - {"key"}
        if unknown:
            raise ValidationError(
                f"Unknown definition fields: {', '.join(sorted(unknown))}"
            )

        definition = AppDefinition(id=str(uuid.uuid4()), **fields)
        self.session.add(definition)
        self.session.flush()
        return definition

    def update_definition(
        self, definition_id: str, updates: Dict[str, Any]
    ) -> AppDefinition:
        definition = self.get_definition_by_id(definition_id)
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown definition fields: {', '.join(sorted(unknown))}"
            )
        for name, value in updates.items():
            setattr(definition, name, value)
        definition.updated_at = utcnow()
        self.session.flush()
        return definition

    def deactivate_definition(self, key: str) -> AppDefinition:
        definition = self.get_definition_by_key(key)
        definition.is_active = False
        definition.updated_at = utcnow()
        self.session.flush()
        return definition

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def publish_version(
        self,
        app_key: str,
        version: str,
        changelog: Optional[str] = None,
        migrations: Optional[List[Any]] = None,
        breaking_changes: bool = False,
        manifest_url: Optional[str] = None,
        deprecated_at: Optional[datetime] = None,
        end_of_life_at: Optional[datetime] = None,
        released_at: Optional[datetime] = None,
    ) -> AppVersion:
        definition = self.get_definition_by_key(app_key)
        if not _SEMVER_RE.match(version or ""):
            raise ValidationError(
                f"Version '{version}' is not a valid semantic version", field="version"
            )

        exists = (
            self.session.query(AppVersion)
            .filter_by(app_definition_id=definition.id, version=version)
            .first()
        )
        if exists:
            raise ConflictError(
                f"Version '{version}' already published for '{app_key}'",
                key=app_key,
                version=version,
            )

        app_version = AppVersion(
            id=str(uuid.uuid4()),
            app_definition_id=definition.id,
            version=version,
            changelog=changelog,
            migrations=list(migrations or []),
            breaking_changes=bool(breaking_changes),
            manifest_url=manifest_url,
            released_at=to_naive_utc(released_at) or utcnow(),
            deprecated_at=to_naive_utc(deprecated_at),
            end_of_life_at=to_naive_utc(end_of_life_at),
        )
        self.session.add(app_version)
        self.session.flush()
        logger.info("Published %s@%s", app_key, version)
        return app_version

    def list_versions(self, app_key: str) -> List[AppVersion]:
        """Newest release first: [0] is the latest version."""
        definition = self.get_definition_by_key(app_key)
        return (
            self.session.query(AppVersion)
            .filter(AppVersion.app_definition_id == definition.id)
            .order_by(AppVersion.released_at.desc())
            .all()
        )

    def get_latest_version(self, app_key: str) -> Optional[AppVersion]:
        versions = self.list_versions(app_key)
        return versions[0] if versions else None

    def get_version(self, app_key: str, version: str) -> Optional[AppVersion]:
        definition = self.get_definition_by_key(app_key)
        return (
            self.session.query(AppVersion)
            .filter_by(app_definition_id=definition.id, version=version)
            .first()
        )

    def promote_version(self, app_key: str, version: str, to_channel: str) -> int:
        """
        Move every active install on `to_channel` to `version`.
        Pinned installs are never on the target channel, so they stay untouched.
        """
        self.get_definition_by_key(app_key)
        now = utcnow()
        affected = (
            self.session.query(TenantAppInstall)
            .filter(
                TenantAppInstall.key == app_key,
                TenantAppInstall.channel == to_channel,
                TenantAppInstall.is_active.is_(True),
            )
            .update(
                {
                    TenantAppInstall.installed_version: version,
                    TenantAppInstall.last_updated_at: now,
                    TenantAppInstall.updated_at: now,
                },
                synchronize_session="fetch",
            )
        )
        self.session.flush()
        return affected

    # ------------------------------------------------------------------
    # Compatibility matrix
    # ------------------------------------------------------------------

    def get_compatibility(self, definition_id: str) -> Optional[AppCompatibility]:
        return (
            self.session.query(AppCompatibility)
            .filter_by(app_definition_id=definition_id)
            .first()
        )

    def set_compatibility(
        self, app_key: str, incompatible_with: List[str]
    ) -> AppCompatibility:
        definition = self.get_definition_by_key(app_key)
        errors = []
        for pattern in incompatible_with:
            try:
                re.compile(pattern)
            except re.error as exc:
                errors.append(f"{pattern}: {exc}")
        if errors:
            raise ValidationError(
                "Invalid incompatibility pattern",
                field="incompatible_with",
                errors=errors,
            )

        compat = self.get_compatibility(definition.id)
        if not compat:
            compat = AppCompatibility(
                id=str(uuid.uuid4()), app_definition_id=definition.id
            )
            self.session.add(compat)
        compat.incompatible_with = list(incompatible_with)
        compat.updated_at = utcnow()
        self.session.flush()
        return compat
