"""
Manifest Loader
Validates app manifests and registers them as app definitions.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from appharbor.app_registry.models import AppDefinition, TenantAppInstall
from appharbor.app_registry.registry_service import RegistryService
from appharbor.app_registry.schemas import AppManifest, ManifestValidation, format_errors
from appharbor.exceptions import ValidationError

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".json", ".yaml", ".yml")

# Manifest fields copied onto the definition row on register.
_MANIFEST_FIELDS = (
    "name",
    "description",
    "app_type",
    "icon_name",
    "domain_tables",
    "shared_tables",
    "hooks",
    "ui_components",
    "capabilities",
    "integration_requirements",
    "routes",
    "modules",
    "extension_points",
    "mcp_actions",
)


def load_manifest_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a manifest from a .json, .yaml or .yml file."""
    manifest_path = Path(path)
    if manifest_path.suffix not in MANIFEST_SUFFIXES:
        raise ValidationError(
            f"Unsupported manifest format '{manifest_path.suffix}'",
            field="path",
        )
    if not manifest_path.is_file():
        raise ValidationError(f"Manifest file not found: {manifest_path}", field="path")

    with open(manifest_path, "r", encoding="utf-8") as f:
        try:
            if manifest_path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValidationError(
                f"Failed to parse manifest {manifest_path.name}: {exc}", field="path"
            ) from exc

    if not isinstance(data, dict):
        raise ValidationError("Manifest must be a mapping", field="path")
    return data


class ManifestLoader:
    def __init__(self, session: Session, registry: Optional[RegistryService] = None):
        self.session = session
        self.registry = registry or RegistryService(session)

    def validate_manifest(self, manifest: Dict[str, Any]) -> ManifestValidation:
        try:
            parsed = AppManifest.model_validate(manifest)
        except PydanticValidationError as exc:
            return ManifestValidation(ok=False, errors=format_errors(exc))

        error = self._probe_tables(parsed.domain_tables)
        if error:
            return ManifestValidation(ok=False, errors=[error])
        return ManifestValidation(ok=True)

    def _probe_tables(self, tables: List[str]) -> Optional[str]:
        """First missing domain table as an error string; empty tables are fine."""
        inspector = inspect(self.session.connection())
        for table in tables:
            try:
                found = inspector.has_table(table)
            except SQLAlchemyError as exc:
                return f"Domain table '{table}' does not exist or is not accessible: {exc}"
            if not found:
                return (
                    f"Domain table '{table}' does not exist or is not accessible: "
                    "relation not found"
                )
        return None

    def check_migration_needed(
        self, tenant_id: str, app_key: str, target_version: str
    ) -> bool:
        install = (
            self.session.query(TenantAppInstall)
            .filter_by(tenant_id=tenant_id, key=app_key)
            .first()
        )
        if not install:
            return False

        target = self.registry.find_definition(app_key)
        if not target:
            return False

        recorded = install.domain_tables
        if recorded is None and install.app_definition is not None:
            recorded = install.app_definition.domain_tables
        current_tables = sorted(recorded or [])
        target_tables = sorted(target.domain_tables or [])
        needed = current_tables != target_tables
        if needed:
            logger.info(
                "Migration needed for %s -> %s (tenant %s)",
                app_key,
                target_version,
                tenant_id,
            )
        return needed

    def register_from_manifest(self, manifest: Dict[str, Any]) -> AppDefinition:
        """Validate, then upsert the definition by key."""
        validation = self.validate_manifest(manifest)
        if not validation.ok:
            raise ValidationError(
                f"Manifest validation failed: {', '.join(validation.errors)}",
                field="manifest",
                errors=validation.errors,
            )

        parsed = AppManifest.model_validate(manifest)
        fields = parsed.model_dump(include=set(_MANIFEST_FIELDS))
        fields["schema_version"] = parsed.version

        existing = self.registry.find_definition(parsed.key)
        if existing:
            # app_type is fixed at creation
            fields.pop("app_type")
            definition = self.registry.update_definition(existing.id, fields)
            logger.info("Updated app definition %s from manifest", parsed.key)
            return definition

        definition = self.registry.create_definition(
            key=parsed.key, is_active=True, **fields
        )
        logger.info("Registered app definition %s from manifest", parsed.key)
        return definition
