"""FastAPI application factory."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from nftcache.api.routes import media
from nftcache.core import timezone  # noqa: F401  # sets TZ=UTC
from nftcache.core.config import Settings, configure_logging
from nftcache.core.container import MediaStack, build_media_stack

logger = structlog.get_logger()


def create_app(settings: Settings | None = None, stack: MediaStack | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Application settings (loaded from the environment when None)
        stack: Pre-built media stack (built from settings in the lifespan when None)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the media stack on startup and close it on shutdown."""
        configure_logging(settings)

        app.state.stack = stack or build_media_stack(settings)
        await app.state.stack.startup()

        logger.info(
            "application.startup",
            db_url=settings.database_url.split("@")[-1],
            cache_dir=settings.cache_dir,
            variants=sorted(settings.image_variants),
        )

        yield

        logger.info("application.shutdown")
        await app.state.stack.aclose()

    app = FastAPI(
        title="nftcache",
        description="Solana NFT media resolution and caching service",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(media.router)

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy", "media": {...counts}} if the database answers
            503: {"status": "unhealthy", "error": {...}} if the database connection fails
        """
        try:
            async with app.state.stack.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()
            counts = await app.state.stack.store.status_counts()

            logger.debug("health_check.success")
            return {"status": "healthy", "media": counts}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
