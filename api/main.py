from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Project-root .env, loaded before settings are first read.
load_dotenv(Path(__file__).parent.parent / ".env")

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ingestion.db.session import init_db
from ingestion.settings import get_settings
from ingestion.utils.logging import configure_logging

from .routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, json_enabled=settings.log_json)
    init_db(settings)
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Storefront Review Service", version="0.1.0", lifespan=lifespan)
    app.include_router(router)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("http.unhandled_error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/healthz", tags=["system"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
