"""
MCP Action Registry Service
Registration and discovery of the MCP actions declared by installed apps.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from sqlalchemy.orm import Session

from appharbor.app_registry.models import McpActionRegistryEntry
from appharbor.config import get_settings

logger = logging.getLogger(__name__)


def best_effort(
    session: Session, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any
) -> Optional[str]:
    """
    Run a side effect that must never fail the caller.

    The side effect runs inside a SAVEPOINT so a failed write is rolled back
    without poisoning the surrounding transaction. Returns a warning string on
    failure, None on success.
    """
    try:
        with session.begin_nested():
            func(*args, **kwargs)
    except Exception as exc:
        logger.warning("%s failed (ignored): %s", label, exc)
        return f"{label} failed: {exc}"
    return None


class McpActionRegistryService:
    def __init__(self, session: Session):
        self.session = session

    def register_tenant_actions(
        self,
        tenant_id: str,
        app_key: str,
        actions: List[Dict[str, Any]],
        created_by: Optional[str] = None,
    ) -> List[McpActionRegistryEntry]:
        """Upsert by (tenant_id, fq_action, version)."""
        if not actions:
            return []

        entries = []
        for action in actions:
            action_key = action["key"]
            version = action["version"]
            fq_action = f"{app_key}.{action_key}"

            entry = (
                self.session.query(McpActionRegistryEntry)
                .filter_by(tenant_id=tenant_id, fq_action=fq_action, version=version)
                .first()
            )
            if not entry:
                entry = McpActionRegistryEntry(
                    id=str(uuid.uuid4()),
                    tenant_id=tenant_id,
                    fq_action=fq_action,
                    version=version,
                )
                self.session.add(entry)

            entry.app_key = app_key
            entry.action_key = action_key
            entry.description = action.get("description")
            entry.input_schema = action.get("input_schema")
            entry.output_schema = action.get("output_schema")
            entry.enabled = True
            entry.created_by = created_by
            entries.append(entry)

        self.session.flush()
        logger.info(
            "Registered %d MCP actions for %s in tenant %s",
            len(entries),
            app_key,
            tenant_id,
        )
        return entries

    def disable_tenant_app_actions(self, tenant_id: str, app_key: str) -> int:
        count = (
            self.session.query(McpActionRegistryEntry)
            .filter_by(tenant_id=tenant_id, app_key=app_key)
            .update({McpActionRegistryEntry.enabled: False}, synchronize_session="fetch")
        )
        self.session.flush()
        logger.info("Disabled MCP actions for %s in tenant %s", app_key, tenant_id)
        return count

    def list_actions(
        self,
        tenant_id: str,
        app_key: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> List[McpActionRegistryEntry]:
        q = self.session.query(McpActionRegistryEntry).filter(
            McpActionRegistryEntry.tenant_id == tenant_id
        )
        if app_key:
            q = q.filter(McpActionRegistryEntry.app_key == app_key)
        if enabled is not None:
            q = q.filter(McpActionRegistryEntry.enabled.is_(enabled))
        return q.order_by(McpActionRegistryEntry.created_at.desc()).all()

    def get_action(
        self, tenant_id: str, fq_action: str, version: Optional[str] = None
    ) -> Optional[McpActionRegistryEntry]:
        q = self.session.query(McpActionRegistryEntry).filter(
            McpActionRegistryEntry.tenant_id == tenant_id,
            McpActionRegistryEntry.fq_action == fq_action,
            McpActionRegistryEntry.enabled.is_(True),
        )
        if version:
            q = q.filter(McpActionRegistryEntry.version == version)
        else:
            q = q.order_by(McpActionRegistryEntry.created_at.desc())
        return q.first()

    @staticmethod
    def validate_payload(
        entry: McpActionRegistryEntry, payload: Any
    ) -> Tuple[bool, List[str]]:
        errors: List[str] = []

        if entry.input_schema:
            try:
                Draft202012Validator.check_schema(entry.input_schema)
                validator = Draft202012Validator(entry.input_schema)
                found = validator.iter_errors(payload)
                for err in sorted(found, key=lambda e: [str(p) for p in e.path]):
                    path = ".".join(str(p) for p in err.path)
                    errors.append(f"{path}: {err.message}" if path else err.message)
            except SchemaError as exc:
                errors.append(f"Invalid input schema: {exc.message}")

        limit = get_settings().MCP_PAYLOAD_LIMIT_BYTES
        if len(json.dumps(payload, default=str)) > limit:
            errors.append(f"Payload exceeds {limit // 1024}KB limit")

        return not errors, errors
