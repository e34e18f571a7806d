"""
FastAPI application factory and configuration.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from chathook.core.config import get_settings
from chathook.core.database import init_db
from chathook.core.logging import setup_logging, get_logger
from chathook.api import webhook, conversations, messages, health, metrics, ws
from chathook.api.metrics import MetricsMiddleware, set_startup_time


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger = get_logger(__name__)
    logger.info("Starting application...")

    init_db()
    logger.info("Database initialized")

    set_startup_time()

    yield

    logger.info("Shutting down application...")


async def repository_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    get_logger(__name__).error(
        "Repository failure",
        exc_info=exc,
        extra={"extra_data": {"path": request.url.path}},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    setup_logging()
    logger = get_logger(__name__)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Webhook ingestion, conversation state and live updates for chat messages",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)

    app.add_exception_handler(SQLAlchemyError, repository_error_handler)

    app.include_router(webhook.router)
    app.include_router(conversations.router)
    app.include_router(messages.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    app.include_router(ws.router)

    logger.info(
        "Application created",
        extra={
            "extra_data": {
                "app_name": settings.app_name,
                "version": settings.app_version,
                "debug": settings.debug,
            }
        }
    )

    return app


# Create the application instance
app = create_app()
