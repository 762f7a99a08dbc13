"""
Built-in MCP actions exposing read-only registry queries to agents.
"""

from __future__ import annotations

from typing import Any, Dict, List

from appharbor.app_registry.compatibility_service import LATEST, CompatibilityService
from appharbor.app_registry.mcp_action_service import McpContext, register_handler
from appharbor.app_registry.tenant_apps_service import TenantAppsService


def preflight_action(context: McpContext, payload: Dict[str, Any]) -> Dict[str, Any]:
    app_key = payload.get("app_key")
    if not app_key:
        raise ValueError("app_key is required")
    check = CompatibilityService(context.session).preflight(
        context.tenant_id, app_key, payload.get("version") or LATEST
    )
    return check.to_dict()


def list_installed_action(context: McpContext, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    installs = TenantAppsService(context.session).list_installed(context.tenant_id)
    return [
        {
            "key": i.key,
            "name": i.name,
            "installed_version": i.installed_version,
            "channel": i.channel,
            "install_status": i.install_status,
        }
        for i in installs
    ]


BUILTIN_ACTIONS = {
    "app_registry.preflight": preflight_action,
    "app_registry.list_installed": list_installed_action,
}


def register_builtin_actions() -> None:
    for name, handler in BUILTIN_ACTIONS.items():
        register_handler(name, handler)
