from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from appharbor.config import get_settings
from appharbor.context import bind_request_context


class TenantUserContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        settings = get_settings()
        with bind_request_context(
            request.headers.get(settings.TENANT_HEADER),
            request.headers.get(settings.USER_HEADER),
        ):
            return await call_next(request)
