from __future__ import annotations

from typing import Optional

from fastapi import HTTPException

from appharbor.config import get_settings
from appharbor.context import get_request_context


def get_tenant_id() -> str:
    """Tenant of the current request; admin app routes are always tenant-scoped."""
    tenant_id = get_request_context().tenant_id
    if not tenant_id:
        header = get_settings().TENANT_HEADER
        raise HTTPException(status_code=400, detail=f"Missing {header} header")
    return tenant_id


def get_user_id_optional() -> Optional[str]:
    return get_request_context().user_id
