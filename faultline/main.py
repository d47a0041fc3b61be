"""
FastAPI application entry point.
"""

import asyncio
from typing import Optional

from fastapi import FastAPI

from faultline import __version__
from faultline.api import observability
from faultline.config import Settings, get_settings
from faultline.middleware.error_handler import install_exception_handlers
from faultline.pipeline import ErrorPipeline
from faultline.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    pipeline: Optional[ErrorPipeline] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the FastAPI application with an error pipeline attached.

    Args:
        pipeline: Pipeline to use (built from settings when omitted)
        settings: Settings (cached environment settings by default)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    setup_logging(settings.diagnostics_log_level)

    pipeline = pipeline or ErrorPipeline.from_settings(settings)

    app = FastAPI(
        title="Faultline",
        description="Application error and observability pipeline",
        version=__version__,
    )
    app.state.pipeline = pipeline
    app.state.admin_api_key = settings.admin_api_key

    install_exception_handlers(app, pipeline.interceptor)
    app.include_router(observability.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for container orchestration."""
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.environment,
        }

    @app.on_event("startup")
    async def startup_event():
        """Start pipeline threads and hooks."""
        logger.info("Starting Faultline error pipeline")
        pipeline.start()
        pipeline.install_hooks(asyncio.get_running_loop())

    @app.on_event("shutdown")
    async def shutdown_event():
        """Flush and close the pipeline."""
        logger.info("Shutting down Faultline error pipeline")
        await pipeline.interceptor.drain()
        await asyncio.to_thread(pipeline.shutdown)

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
