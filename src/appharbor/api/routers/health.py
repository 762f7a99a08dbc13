from __future__ import annotations

from fastapi import APIRouter

from appharbor import __version__
from appharbor.config import get_settings
from appharbor.context import get_request_context

router = APIRouter(tags=["system"])


@router.get("/health")
def health() -> dict:
    ctx = get_request_context()
    settings = get_settings()
    return {
        "ok": True,
        "service": "appharbor",
        "version": __version__,
        "tenant_id": ctx.tenant_id,
        "user_id": ctx.user_id,
        "environment": settings.ENVIRONMENT,
        "schema_mode": settings.SCHEMA_MODE,
    }
