from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
import uvicorn

from appharbor import __version__
from appharbor.config import get_settings
from appharbor.exceptions import AppHarborError

app = typer.Typer(add_completion=False, help="AppHarbor CLI")


@app.callback()
def _root() -> None:
    logging.basicConfig(
        level=get_settings().LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(exc: AppHarborError) -> typer.Exit:
    typer.echo(f"Error [{exc.code}]: {exc.message}", err=True)
    return typer.Exit(1)


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command()
def start(
    host: Optional[str] = typer.Option(None, help="Bind host"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    reload: bool = typer.Option(False, help="Auto-reload on changes (dev)"),
) -> None:
    settings = get_settings()
    uvicorn.run(
        "appharbor.api.app:app",
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
    )


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command("init-db")
def init_db_command() -> None:
    """Create registry tables (SCHEMA_MODE=create_all) or verify migrations ran."""
    from appharbor.database import init_db

    try:
        init_db(create_tables=True)
    except AppHarborError as exc:
        raise _fail(exc) from exc
    typer.echo("Database initialized.")


@app.command("register-manifest")
def register_manifest(
    path: Path = typer.Argument(..., help="Manifest file (.json, .yaml, .yml)"),
) -> None:
    """Validate a manifest and upsert its app definition."""
    from appharbor.app_registry.manifest_loader import ManifestLoader, load_manifest_file
    from appharbor.database import get_db_session

    try:
        manifest = load_manifest_file(path)
        with get_db_session() as session:
            definition = ManifestLoader(session).register_from_manifest(manifest)
            key = definition.key
    except AppHarborError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Registered app definition '{key}'.")


@app.command()
def publish(
    key: str = typer.Argument(..., help="App key"),
    version_: str = typer.Argument(..., metavar="VERSION", help="Semantic version"),
    changelog: Optional[str] = typer.Option(None, help="Release notes"),
    breaking: bool = typer.Option(False, "--breaking", help="Flag breaking changes"),
    manifest_url: Optional[str] = typer.Option(None, help="Manifest URL"),
) -> None:
    """Publish a new version of an app definition."""
    from appharbor.app_registry.registry_service import RegistryService
    from appharbor.database import get_db_session

    try:
        with get_db_session() as session:
            RegistryService(session).publish_version(
                key,
                version_,
                changelog=changelog,
                breaking_changes=breaking,
                manifest_url=manifest_url,
            )
    except AppHarborError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Published {key}@{version_}.")


@app.command()
def install(
    key: str = typer.Argument(..., help="App key"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant id"),
    version_: Optional[str] = typer.Option(None, "--version", help="Version (default: latest)"),
    channel: Optional[str] = typer.Option(None, help="stable|canary|pinned"),
    user: Optional[str] = typer.Option(None, "--user", help="Acting user id"),
) -> None:
    """Install an app for a tenant (gated by preflight)."""
    from appharbor.app_registry.tenant_apps_service import TenantAppsService
    from appharbor.database import get_db_session

    try:
        with get_db_session() as session:
            result = TenantAppsService(session).install(
                tenant, key, version=version_, channel=channel, user_id=user
            )
            payload = result.to_dict()
    except AppHarborError as exc:
        raise _fail(exc) from exc
    for warning in payload["warnings"]:
        typer.echo(f"Warning: {warning}", err=True)
    typer.echo(
        f"Installed {key}@{payload['install']['installed_version']} for tenant {tenant}."
    )


@app.command()
def preflight(
    key: str = typer.Argument(..., help="App key"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant id"),
    version_: str = typer.Option("latest", "--version", help="Target version"),
) -> None:
    """Run a compatibility preflight; exits 1 when the check fails."""
    from appharbor.app_registry.compatibility_service import CompatibilityService
    from appharbor.database import get_db_session

    with get_db_session() as session:
        check = CompatibilityService(session).preflight(tenant, key, version_)
    _echo_json(check.to_dict())
    if not check.ok:
        raise typer.Exit(1)


@app.command()
def promote(
    key: str = typer.Argument(..., help="App key"),
    version_: str = typer.Argument(..., metavar="VERSION", help="Canary version to promote"),
) -> None:
    """Promote a canary version to stable."""
    from appharbor.app_registry.deployment_service import DeploymentService
    from appharbor.database import get_db_session

    try:
        with get_db_session() as session:
            result = DeploymentService(session).promote_to_stable(key, version_)
    except AppHarborError as exc:
        raise _fail(exc) from exc
    typer.echo(f"{result.message} ({result.affected_tenants} tenants updated).")


@app.command()
def rollback(
    key: str = typer.Argument(..., help="App key"),
    version_: str = typer.Argument(..., metavar="VERSION", help="Version to roll back to"),
    channel: Optional[str] = typer.Option(None, help="Only installs on this channel"),
    tenant: Optional[List[str]] = typer.Option(
        None, "--tenant", help="Only these tenants (repeatable)"
    ),
) -> None:
    """Roll installs back to a previous version."""
    from appharbor.app_registry.deployment_service import DeploymentService
    from appharbor.database import get_db_session

    try:
        with get_db_session() as session:
            result = DeploymentService(session).rollback(
                key, version_, channel=channel, tenant_ids=tenant or None
            )
    except AppHarborError as exc:
        raise _fail(exc) from exc
    typer.echo(f"{result.message} ({result.affected_tenants} tenants affected).")


@app.command()
def status(key: str = typer.Argument(..., help="App key")) -> None:
    """Show install counts by channel, version and status."""
    from appharbor.app_registry.deployment_service import DeploymentService
    from appharbor.database import get_db_session

    with get_db_session() as session:
        deployment = DeploymentService(session).get_deployment_status(key)
    _echo_json(deployment.to_dict())


@app.command("execute-action")
def execute_action(
    action: str = typer.Argument(..., help="Fully qualified action, e.g. app_registry.preflight"),
    data: Path = typer.Option(..., "--data", help="JSON payload file"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant id"),
    user: Optional[str] = typer.Option(None, "--user", help="Acting user id"),
    idempotency_key: Optional[str] = typer.Option(None, "--idempotency-key"),
) -> None:
    """
    Developer tool: run an MCP action in-process.

    Exits 1 when the data file is missing or not valid JSON, or when the
    action returns ok=false.
    """
    from appharbor.app_registry.mcp_action_service import McpActionService, McpContext
    from appharbor.app_registry.mcp_builtin_actions import register_builtin_actions
    from appharbor.database import get_db_session

    if not data.is_file():
        typer.echo(f"Error: data file not found: {data}", err=True)
        raise typer.Exit(1)
    try:
        payload = json.loads(data.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        typer.echo(f"Error: failed to parse {data}: {exc}", err=True)
        raise typer.Exit(1)

    register_builtin_actions()
    with get_db_session() as session:
        response = McpActionService(session).execute(
            action,
            payload,
            McpContext(tenant_id=tenant, user_id=user),
            idempotency_key=idempotency_key,
        )
    _echo_json(response)
    if not response.get("ok"):
        raise typer.Exit(1)


def main() -> None:
    app()
