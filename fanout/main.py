"""
Main FastAPI application for the fan-out consistency maintainer.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from fanout.config import LOG_LEVEL
from fanout.db import init_db
from fanout.errors import ConfigurationError, ExternalServiceError
from fanout.routes.cascade import router as cascade_router
from fanout.routes.health import router as health_router
from fanout.routes.moderation import router as moderation_router
from fanout.routes.triggers import router as triggers_router
from fanout.services.jobs import Services, build_default_services

log = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Collaborator bundle; the configured database is used when None

    Returns:
        Configured FastAPI app instance
    """
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            init_db()
        yield

    app = FastAPI(
        title="Fan-out Consistency API",
        description="Cascading cleanup, moderation and index maintenance for a denormalized social store",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.services = services or build_default_services()

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(request: Request, exc: ConfigurationError):
        """Unknown kinds, bad ids and undeclared indexes are caller errors."""
        return JSONResponse(
            status_code=400,
            content={
                "error_code": "CONFIGURATION_ERROR",
                "message": "Request cannot be served with the current configuration",
                "details": str(exc),
            },
        )

    @app.exception_handler(ExternalServiceError)
    async def external_service_exception_handler(request: Request, exc: ExternalServiceError):
        log.error("External service %s failed: %s", exc.service, exc)
        return JSONResponse(
            status_code=502,
            content={
                "error_code": "EXTERNAL_SERVICE_ERROR",
                "message": f"{exc.service} call failed",
                "details": str(exc) if app.debug else "Upstream service issue",
            },
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        """Handle SQLAlchemy database errors."""
        log.exception("Database operation failed")
        return JSONResponse(
            status_code=500,
            content={
                "error_code": "DATABASE_ERROR",
                "message": "Database operation failed",
                "details": str(exc) if app.debug else "Database connection issue",
            },
        )

    app.include_router(cascade_router)
    app.include_router(moderation_router)
    app.include_router(triggers_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        return {"message": "Fan-out Consistency API", "status": "healthy", "version": "1.0.0"}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("fanout.main:create_app", factory=True, host="0.0.0.0", port=8000, log_level="info")
