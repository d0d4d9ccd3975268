"""Image Drop Backend Application.

This is the main entry point for the Image Drop service.
Image Drop accepts base64 data-URI image uploads, re-compresses them,
stores them under random names and deletes them after a retention window.

Modules:
    - uploads: data-URI ingestion, storage, metadata and retention sweep
    - ratelimit: per-client-IP request limiting
    - config: YAML settings with PORT override
"""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import AppConfig, get_config
from app.ratelimit import install_rate_limit
from app.uploads.metadata_store import MetadataStore
from app.uploads.retention import RetentionSweeper
from app.uploads.router import router as uploads_router, upload_body_error_handler
from app.uploads.service import UploadService, set_upload_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Pillow logs every plugin it probes while detecting formats.
logging.getLogger("PIL").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

HOMEPAGE_TEXT = "This is the homepage. Send a post request to /upload to upload a file."


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application for *config* (default: loaded settings)."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        store = MetadataStore(config.storage.metadata_path)
        store.ensure()

        service = UploadService(
            upload_dir=config.storage.upload_dir,
            store=store,
            max_bytes=config.uploads.max_bytes,
            allowed_mime_types=config.uploads.allowed_mime_types,
            png_compress_level=config.uploads.png_compress_level,
            lossy_quality=config.uploads.lossy_quality,
        )
        set_upload_service(service)
        logger.info(
            "Upload service ready: upload_dir=%s metadata=%s",
            config.storage.upload_dir,
            config.storage.metadata_path,
        )

        sweeper: Optional[RetentionSweeper] = None
        if config.retention.enabled:
            sweeper = RetentionSweeper(
                store=store,
                upload_dir=config.storage.upload_dir,
                max_age=timedelta(days=config.retention.max_age_days),
                interval_seconds=config.retention.interval_seconds,
            )
            await sweeper.start()
            app.state.sweeper = sweeper
        else:
            logger.info("Retention disabled in config.")

        logger.info("API running on port %s.", config.server.port)

        yield  # Application runs here

        # Shutdown
        if sweeper is not None:
            await sweeper.stop()
        set_upload_service(None)
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Image Drop API",
        description="Stores re-compressed data-URI image uploads for a limited time",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

    app.add_exception_handler(RequestValidationError, upload_body_error_handler)
    install_rate_limit(app, config.rate_limit)
    app.include_router(uploads_router)

    @app.get("/", response_class=PlainTextResponse)
    async def homepage() -> str:
        """Usage hint."""
        return HOMEPAGE_TEXT

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured port."""
    import uvicorn

    config = get_config()
    uvicorn.run(app, host=config.server.host, port=config.server.port)


if __name__ == "__main__":
    run()
