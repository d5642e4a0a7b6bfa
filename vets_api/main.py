from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from vets_api.core.config import Settings, get_settings
from vets_api.core.errors import StorageError
from vets_api.core.middleware import RequestContextMiddleware
from vets_api.routers.auth import router as auth_router
from vets_api.routers.health import router as health_router
from vets_api.routers.pages import router as pages_router
from vets_api.routers.sse import router as sse_router
from vets_api.routers.verification import mock_router as mock_verification_router
from vets_api.routers.verification import router as verification_router

logger = logging.getLogger("vets.api")


def _include_routers(app: FastAPI, settings: Settings) -> None:
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(verification_router)
    if settings.allows_mock_completion:
        app.include_router(mock_verification_router)
    app.include_router(sse_router)
    # Last: owns the catch-all /{username} route.
    app.include_router(pages_router)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="vets.dev API", version=settings.VERSION)

    # Added first so CORS wraps it and preflight answers skip the rate limiter.
    app.add_middleware(RequestContextMiddleware, settings=settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["content-type", settings.REQUEST_ID_HEADER],
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("storage failure: %s", exc.message, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    if settings.ENABLE_PROMETHEUS_METRICS:

        @app.get(settings.PROMETHEUS_METRICS_PATH, include_in_schema=False)
        def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    _include_routers(app, settings)
    return app


app = create_app()
