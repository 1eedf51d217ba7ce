"""
FastAPI application for the booking backend

Webhooks only enqueue work; conversations and payments are processed in workers
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from bookflow.api.v1.router import api_v1_router
from bookflow.config.settings import get_settings
from bookflow.core.middleware import correlation_id_middleware, request_logging_middleware
from bookflow.core.monitoring import health_router
from bookflow.utils.my_logging import setup_logging
from bookflow.webhooks.router import webhook_router

settings = get_settings()
logger = logging.getLogger(__name__)


def _log_routes(app: FastAPI) -> None:
    for route in app.routes:
        if isinstance(route, APIRoute):
            logger.debug(f"{','.join(sorted(route.methods)):12} {route.path}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging before the first request is served"""
    setup_logging()
    logger.info(f"{settings.APP_NAME} API starting up (webhooks at /webhooks/, API at /api/v1/)")
    _log_routes(app)

    yield

    logger.info(f"{settings.APP_NAME} API shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="WhatsApp appointment booking with Mercado Pago payment links",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "PUT"],
        allow_headers=["*"],
    )

    # Logging runs inside the correlation middleware so it sees the id
    app.middleware("http")(request_logging_middleware)
    app.middleware("http")(correlation_id_middleware)

    app.include_router(webhook_router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(health_router, prefix="/health", tags=["monitoring"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "service": f"{settings.APP_NAME} API",
            "version": "0.1.0",
            "status": "running",
            "endpoints": {
                "webhooks": "/webhooks/",
                "health": "/health",
                "docs": "/docs" if settings.DEBUG else "disabled"
            }
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "bookflow.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
