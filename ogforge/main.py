"""
OG Image Service FastAPI application entry point.
This service renders Open Graph preview images and page metadata on demand,
serving repeated requests from an in-memory cache.
"""
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .routes.og_routes import router as og_router
from .services.artifact_cache import ArtifactCache
from .services.metadata_service import MetadataService
from .services.og_service import OGService
from .utils.debug import print_step, setup_logging


def create_app(og_service: Optional[OGService] = None,
               metadata_service: Optional[MetadataService] = None) -> FastAPI:
    """
    Create and configure the FastAPI application for the OG image service.

    Args:
        og_service: Engine instance to serve; built from settings when omitted
        metadata_service: Page metadata service; built from settings when omitted

    Returns:
        Configured FastAPI application
    """
    setup_logging(settings.DEBUG)

    og_service = og_service or OGService.from_settings(settings)
    metadata_service = metadata_service or MetadataService(
        cache=ArtifactCache(capacity=settings.OG_CACHE_CAPACITY, default_ttl=settings.OG_METADATA_TTL_SECONDS),
        base_url=settings.PUBLIC_BASE_URL,
        ttl=settings.OG_METADATA_TTL_SECONDS,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        print_step("OG Service Startup", {
            "templates": og_service.templates(),
            "workers": og_service.offload.max_workers,
            "cache_capacity": og_service.cache.capacity,
        }, "info")
        yield
        og_service.shutdown()
        print_step("OG Service Shutdown", "Worker pool released", "info")

    app = FastAPI(
        title="OG Image Service",
        version="1.0.0",
        description="Open Graph image and metadata generation with render caching",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.og_service = og_service
    app.state.metadata_service = metadata_service

    # Add CORS middleware
    print_step("CORS Configuration", {"origins": settings.CORS_ORIGINS}, "input")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALL_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    print_step("FastAPI App Initialization", "FastAPI app and CORS middleware configured", "output")

    # Health check endpoint
    @app.get("/")
    def read_root():
        return {"status": "OG Image Service is online", "service": "og"}

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "og"}

    app.include_router(og_router)

    return app


# Create the app instance
app = create_app()


def run() -> None:
    """Serve the module-level app with uvicorn."""
    print_step("OG Service Listening", {"host": settings.HOST, "port": settings.PORT}, "info")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level="debug" if settings.DEBUG else "info")


if __name__ == "__main__":
    run()
