from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tradiepay.modules.billing.api.v1.webhooks import CORS_HEADERS, router as webhooks_router
from tradiepay.modules.billing.domain.billing.processor import build_webhook_dependencies
from tradiepay.shared.core.config import get_settings, reload_settings_from_environment
from tradiepay.shared.core.exceptions import ConfigurationError, TradiePayException
from tradiepay.shared.core.http import close_http_client, init_http_client
from tradiepay.shared.core.logging import setup_logging
from tradiepay.shared.db.session import dispose_db_runtime

setup_logging()
settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)

    await init_http_client()

    # Misconfiguration keeps the process up; the webhook answers 500 until fixed.
    try:
        app.state.webhook_dependencies = build_webhook_dependencies(settings)
    except ConfigurationError as exc:
        app.state.webhook_dependencies = None
        logger.error("webhook_dependencies_unavailable", missing=exc.details.get("missing"))

    yield

    logger.info("app_shutting_down")
    await close_http_client()
    await dispose_db_runtime()


tradiepay_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)
# Uvicorn looks for `app` by default.
app: FastAPI = tradiepay_app

__all__ = ["app", "tradiepay_app", "lifespan"]


@tradiepay_app.exception_handler(TradiePayException)
async def tradiepay_exception_handler(
    request: Request, exc: TradiePayException
) -> JSONResponse:
    """Render application errors as {"error": message} with the webhook CORS headers."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers=CORS_HEADERS,
    )


@tradiepay_app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("webhook_error", path=request.url.path, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": str(exc) or "Unknown error"},
        headers=CORS_HEADERS,
    )


@tradiepay_app.get("/health", include_in_schema=False)
async def health() -> Any:
    return {"status": "ok", "version": settings.VERSION}


tradiepay_app.include_router(webhooks_router)
