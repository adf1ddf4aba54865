"""Main application module for the face access identity service."""
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from face_access.api import router as api_v1_router
from face_access.core.config import settings
from face_access.core.container import container
from face_access.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[Any, None]:
    """Handle application startup and shutdown events.

    Args:
        app: FastAPI application instance

    Returns:
        AsyncGenerator[Any, None]: Async context manager for app lifecycle
    """
    logger.info(
        "Starting up face access identity service",
        version=settings.VERSION,
        environment=settings.ENVIRONMENT,
    )

    await container.initialize()
    container.lifecycle_sweeper.start()
    logger.info("Initialized application services")

    yield

    logger.info("Shutting down face access identity service")
    await container.cleanup()
    logger.info("Cleaned up application resources")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(api_v1_router, prefix=settings.API_V1_STR)

    @application.get("/health")
    async def health_check() -> dict:
        """Basic health check endpoint.

        Returns:
            dict: Health status
        """
        logger.info("Health check requested")
        return {"status": "healthy"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("face_access.main:app", host=settings.HOST, port=settings.PORT)
