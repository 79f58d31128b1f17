"""
Main application entry point for the ReviewIQ scheduling backend.

Usage:
    - Direct: python -m reviewiq.main
    - ASGI server: uvicorn reviewiq.main:create_app --factory
"""

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine

from reviewiq import __version__
from reviewiq.api import review_error_handler, router
from reviewiq.common.cache import create_cache_backend
from reviewiq.common.config import AppConfig, get_config
from reviewiq.common.db import SQLAlchemyReviewStore, create_engine, create_session_factory, init_models
from reviewiq.common.exceptions import ReviewIQError
from reviewiq.common.logger import app_logger, configure_logger
from reviewiq.review.cache import ReviewCache
from reviewiq.review.orchestrator import ReviewBatchOrchestrator
from reviewiq.review.service import ReviewService

logger = app_logger.getChild("main")


@dataclass
class Components:
    """Wired service graph of one process."""
    service: ReviewService
    orchestrator: ReviewBatchOrchestrator
    engine: Optional[AsyncEngine] = None


async def build_components(config: Optional[AppConfig] = None) -> Components:
    """Create the database engine, cache, service and orchestrator from configuration."""
    config = config or get_config()
    engine = create_engine(config.database)
    await init_models(engine)

    store = SQLAlchemyReviewStore(create_session_factory(engine))
    cache = ReviewCache(create_cache_backend(config.cache, config.redis), config.cache)
    service = ReviewService(store, cache, config)
    return Components(service=service, orchestrator=ReviewBatchOrchestrator(service), engine=engine)


def create_app(
    config: Optional[AppConfig] = None,
    components: Optional[Components] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Application configuration; loaded from the environment if omitted
        components: Pre-built service graph; built on startup if omitted
    """
    config = config or get_config()
    configure_logger(
        level=config.logging.level,
        use_json=config.logging.use_json,
        log_file=config.logging.log_file,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        wired = components or await build_components(config)
        app.state.service = wired.service
        app.state.orchestrator = wired.orchestrator
        wired.orchestrator.start()
        logger.info(f"Application startup complete ({config.env})")
        try:
            yield
        finally:
            await wired.orchestrator.stop()
            await wired.service.cache.backend.close()
            if wired.engine is not None:
                await wired.engine.dispose()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title="ReviewIQ API",
        description="Spaced-repetition review scheduling with adaptive difficulty",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ReviewIQError, review_error_handler)
    app.include_router(router, prefix="/api/v1/review", tags=["review"])

    @app.get("/")
    async def root():
        return {"message": "Welcome to ReviewIQ API"}

    return app


def main():
    """Run the API server."""
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    reload_enabled = os.getenv("RELOAD", "false").lower() == "true"

    logger.info(f"Starting server on {host}:{port} (reload: {reload_enabled})")
    uvicorn.run(
        "reviewiq.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload_enabled,
        log_level="info"
    )


if __name__ == "__main__":
    main()
