from contextlib import asynccontextmanager
from fastapi import FastAPI

from notifier.config.settings import settings
from notifier.utils.logging import get_logger
from notifier.routers import health_router, jobs_router
from notifier.utils.errors import setup_error_handlers
from notifier.middlewares import RequestIDMiddleware

# Initialize the logger
logger = get_logger()


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(f"{settings.NAME} is starting up...")
    yield
    logger.info(f"{settings.NAME} is shutting down...")


def create_application() -> FastAPI:
    """Initialize the FastAPI application with settings and lifespan events."""
    application = FastAPI(
        title=settings.NAME, version=settings.VERSION, lifespan=lifespan
    )

    # Setup error handlers
    setup_error_handlers(application)

    application.add_middleware(RequestIDMiddleware)

    # Routers
    application.include_router(health_router, prefix="/health", tags=["Health"])
    application.include_router(
        jobs_router, prefix=f"{settings.API_PREFIX}/jobs", tags=["Jobs"]
    )

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "notifier.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_config=None,
        log_level=None,
    )
