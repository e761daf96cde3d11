from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cadence.api.routes import router as api_router
from cadence.config import Settings, get_settings
from cadence.db.init import init_database
from cadence.db.session import Database
from cadence.errors import CadenceError, ExternalServiceError
from cadence.llm.router import AIService
from cadence.logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    database: Database | None = None,
    ai_service: AIService | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = database is None
        db = database or Database.from_settings(settings)
        if owned:
            init_database(db, settings)
        app.state.database = db
        try:
            yield
        finally:
            if owned:
                db.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.ai_service = ai_service or AIService(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CadenceError)
    def handle_domain_error(request: Request, exc: CadenceError) -> JSONResponse:
        if isinstance(exc, ExternalServiceError):
            logger.warning("External service failure path=%s cause=%r", request.url.path, exc.__cause__)
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.exception_handler(Exception)
    def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error path=%s", request.url.path)
        return JSONResponse(status_code=500, content={"code": "INTERNAL_ERROR", "detail": "Internal server error"})

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
