from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from appharbor.app_registry.deployment_service import DeploymentService
from appharbor.database import get_db

deployment_router = APIRouter(prefix="/deployments", tags=["Deployments"])


class CanaryRequest(BaseModel):
    version: str
    tenant_ids: List[str] = Field(..., min_length=1)


class PromoteRequest(BaseModel):
    version: str


class RollbackRequest(BaseModel):
    target_version: str
    channel: Optional[str] = None
    tenant_ids: Optional[List[str]] = None


@deployment_router.get("/{key}")
def get_deployment_status(key: str, db: Session = Depends(get_db)):
    return DeploymentService(db).get_deployment_status(key).to_dict()


@deployment_router.post("/{key}/canary")
def deploy_to_canary(key: str, req: CanaryRequest, db: Session = Depends(get_db)):
    result = DeploymentService(db).deploy_to_canary(key, req.version, req.tenant_ids)
    db.commit()
    return result.to_dict()


@deployment_router.post("/{key}/promote")
def promote_to_stable(key: str, req: PromoteRequest, db: Session = Depends(get_db)):
    result = DeploymentService(db).promote_to_stable(key, req.version)
    db.commit()
    return result.to_dict()


@deployment_router.post("/{key}/rollback")
def rollback(key: str, req: RollbackRequest, db: Session = Depends(get_db)):
    result = DeploymentService(db).rollback(
        key, req.target_version, channel=req.channel, tenant_ids=req.tenant_ids
    )
    db.commit()
    return result.to_dict()
