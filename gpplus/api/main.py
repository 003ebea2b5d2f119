"""
GP Plus - Backend API Server (Main Entry Point)
===============================================
FastAPI application exposing the voice chat session over WebSocket.

Endpoints: /api/health, /api/chat/config, /api/chat/session (ws), /metrics
Run: uvicorn gpplus.api.main:app
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import ValidationError

from gpplus.api.chat_endpoints import router as chat_router
from gpplus.core.config import Settings, get_settings
from gpplus.core.exceptions import ConfigurationError, GpPlusException, map_exception_to_http
from gpplus.core.logging import get_logger, setup_unified_logging

logger = get_logger(__name__)


def _load_settings(settings: Optional[Settings]) -> Settings:
    if settings is not None:
        return settings
    try:
        return get_settings()
    except ValidationError as exc:
        raise ConfigurationError("Invalid GP Plus settings", {"errors": exc.errors()}) from exc


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = _load_settings(settings)
    setup_unified_logging(level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT, log_dir=settings.LOG_DIR)

    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
    app.state.settings = settings
    app.state.start_time = datetime.now()
    app.include_router(chat_router)

    @app.exception_handler(GpPlusException)
    async def _gpplus_exception_handler(_request: Request, exc: GpPlusException) -> JSONResponse:
        http_exc = map_exception_to_http(exc)
        logger.warning({"event": "api_error", "type": type(exc).__name__, "error": exc.message})
        return JSONResponse(status_code=http_exc.status_code, content=http_exc.detail, headers=http_exc.headers)

    @app.get("/api/health")
    async def api_health():
        uptime = (datetime.now() - app.state.start_time).total_seconds()
        return {"status": "ok", "service": settings.APP_NAME, "version": settings.APP_VERSION, "uptime_seconds": uptime}

    if settings.METRICS_ENABLED:
        app.mount("/metrics", make_asgi_app())

    logger.info({"event": "app_ready", "environment": settings.ENVIRONMENT, "metrics": settings.METRICS_ENABLED})
    return app


app = create_app()
