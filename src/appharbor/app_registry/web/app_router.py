from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from appharbor.api.dependencies.context import get_tenant_id, get_user_id_optional
from appharbor.app_registry.compatibility_service import LATEST, CompatibilityService
from appharbor.app_registry.manifest_loader import ManifestLoader
from appharbor.app_registry.registry_service import RegistryService
from appharbor.app_registry.runtime_loader import RuntimeLoader
from appharbor.app_registry.schemas import KEY_PATTERN
from appharbor.app_registry.tenant_apps_service import TenantAppsService
from appharbor.database import get_db

app_router = APIRouter(prefix="/apps", tags=["App Registry"])


# ===============================
# Request models
# ===============================


class DefinitionCreateRequest(BaseModel):
    key: str = Field(..., pattern=KEY_PATTERN, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    app_type: str = Field(default="custom", pattern=r"^(core|addon|custom)$")
    description: Optional[str] = None
    icon_name: Optional[str] = None
    routes: List[str] = Field(default_factory=list)
    modules: List[str] = Field(default_factory=list)
    extension_points: Dict[str, Any] = Field(default_factory=dict)
    schema_version: Optional[str] = None


class PublishVersionRequest(BaseModel):
    version: str
    changelog: Optional[str] = None
    migrations: List[Any] = Field(default_factory=list)
    breaking_changes: bool = False
    manifest_url: Optional[str] = None
    deprecated_at: Optional[datetime] = None
    end_of_life_at: Optional[datetime] = None


class CompatibilityRequest(BaseModel):
    incompatible_with: List[str] = Field(default_factory=list)


class InstallRequest(BaseModel):
    key: str
    version: Optional[str] = None
    channel: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class UpdateRequest(BaseModel):
    target_version: str = LATEST


class ChannelRequest(BaseModel):
    channel: str


# ===============================
# Definitions & versions
# ===============================


@app_router.get("/definitions")
def list_definitions(
    app_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
):
    definitions = RegistryService(db).list_definitions(app_type=app_type, is_active=is_active)
    return {"items": [d.to_dict() for d in definitions], "total": len(definitions)}


@app_router.get("/definitions/{key}")
def get_definition(key: str, db: Session = Depends(get_db)):
    return RegistryService(db).get_definition_by_key(key).to_dict()


@app_router.post("/definitions", status_code=201)
def create_definition(req: DefinitionCreateRequest, db: Session = Depends(get_db)):
    definition = RegistryService(db).create_definition(**req.model_dump(exclude_none=True))
    db.commit()
    return definition.to_dict()


@app_router.get("/definitions/{key}/versions")
def list_versions(key: str, db: Session = Depends(get_db)):
    versions = RegistryService(db).list_versions(key)
    return {"items": [v.to_dict() for v in versions], "total": len(versions)}


@app_router.post("/definitions/{key}/versions", status_code=201)
def publish_version(key: str, req: PublishVersionRequest, db: Session = Depends(get_db)):
    version = RegistryService(db).publish_version(key, **req.model_dump())
    db.commit()
    return version.to_dict()


@app_router.put("/definitions/{key}/compatibility")
def set_compatibility(key: str, req: CompatibilityRequest, db: Session = Depends(get_db)):
    compat = RegistryService(db).set_compatibility(key, req.incompatible_with)
    db.commit()
    return {
        "app_definition_id": compat.app_definition_id,
        "incompatible_with": list(compat.incompatible_with or []),
    }


# ===============================
# Manifests
# ===============================


@app_router.post("/manifests", status_code=201)
def register_manifest(
    manifest: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    definition = ManifestLoader(db).register_from_manifest(manifest)
    db.commit()
    return definition.to_dict()


@app_router.post("/manifests/validate")
def validate_manifest(
    manifest: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    return ManifestLoader(db).validate_manifest(manifest).to_dict()


# ===============================
# Tenant installs
# ===============================


@app_router.get("/preflight/{key}")
def preflight(
    key: str,
    version: str = Query(LATEST),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return CompatibilityService(db).preflight(tenant_id, key, version).to_dict()


@app_router.get("/installed")
def list_installed(
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    installs = TenantAppsService(db).list_installed(tenant_id)
    return {
        "items": [i.to_dict(include_definition=True) for i in installs],
        "total": len(installs),
    }


@app_router.get("/installed/{key}")
def get_installed(
    key: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return TenantAppsService(db).get_installed(tenant_id, key).to_dict(include_definition=True)


@app_router.post("/installed", status_code=201)
def install_app(
    req: InstallRequest,
    tenant_id: str = Depends(get_tenant_id),
    user_id: Optional[str] = Depends(get_user_id_optional),
    db: Session = Depends(get_db),
):
    result = TenantAppsService(db).install(
        tenant_id,
        req.key,
        version=req.version,
        channel=req.channel,
        config=req.config,
        user_id=user_id,
    )
    db.commit()
    return result.to_dict()


@app_router.post("/installed/{key}/update")
def update_app(
    key: str,
    req: UpdateRequest,
    tenant_id: str = Depends(get_tenant_id),
    user_id: Optional[str] = Depends(get_user_id_optional),
    db: Session = Depends(get_db),
):
    result = TenantAppsService(db).update(tenant_id, key, req.target_version, user_id=user_id)
    db.commit()
    return result.to_dict()


@app_router.put("/installed/{key}/config")
def set_config(
    key: str,
    config: Dict[str, Any] = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    install = TenantAppsService(db).set_config(tenant_id, key, config)
    db.commit()
    return install.to_dict()


@app_router.put("/installed/{key}/overrides")
def set_overrides(
    key: str,
    overrides: Dict[str, Any] = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    install = TenantAppsService(db).set_overrides(tenant_id, key, overrides)
    db.commit()
    return install.to_dict()


@app_router.put("/installed/{key}/channel")
def set_channel(
    key: str,
    req: ChannelRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    install = TenantAppsService(db).set_channel(tenant_id, key, req.channel)
    db.commit()
    return install.to_dict()


@app_router.delete("/installed/{key}")
def uninstall_app(
    key: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    result = TenantAppsService(db).uninstall(tenant_id, key)
    db.commit()
    return result.to_dict()


@app_router.get("/installed/{key}/context")
def get_app_context(
    key: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
):
    return RuntimeLoader(db).load_app_context(tenant_id, key).to_dict()
