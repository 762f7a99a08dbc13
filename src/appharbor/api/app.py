from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from appharbor import __version__
from appharbor.api.middleware.context import TenantUserContextMiddleware
from appharbor.api.routers.health import router as health_router
from appharbor.app_registry.web.app_router import app_router
from appharbor.app_registry.web.deployment_router import deployment_router
from appharbor.config import get_settings
from appharbor.database import init_db
from appharbor.exceptions import AppHarborError

logger = logging.getLogger(__name__)


async def appharbor_error_handler(request: Request, exc: AppHarborError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover
    # Dev convenience: auto-create tables. Production uses migrations.
    if get_settings().ENVIRONMENT == "dev":
        init_db(create_tables=True)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="AppHarbor", version=__version__, lifespan=lifespan)
    app.add_middleware(TenantUserContextMiddleware)
    app.add_exception_handler(AppHarborError, appharbor_error_handler)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(app_router, prefix="/api/v1")
    app.include_router(deployment_router, prefix="/api/v1")
    return app


app = create_app()
