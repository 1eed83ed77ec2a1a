"""
FastAPI application setup and configuration.
"""
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from .endpoints import router
from ..core.media import is_media
from ..services.gallery import GalleryService
from ..services.thumbnails import STATIC_PREFIX

logger = logging.getLogger(__name__)


def create_app(gallery: GalleryService, watch: bool = True) -> FastAPI:
    """
    Create and configure FastAPI application for one gallery root.
    Args:
        gallery: Service for the root being served
        watch: Whether to watch the root for file changes while running
    """

    app = FastAPI(
        title="DirGallery API",
        description="Browsable thumbnail gallery for a local directory",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.gallery = gallery

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        await gallery.start(watch=watch)

    @app.on_event("shutdown")
    async def shutdown():
        await gallery.shutdown()

    # Include API routes
    app.include_router(router, prefix="/api")

    # Thumbnails are served straight from the cache directory
    gallery.ensure_dirs()
    app.mount(STATIC_PREFIX, StaticFiles(directory=gallery.store.thumbnails_dir), name="thumbnails")

    @app.get("/")
    async def root():
        """API root endpoint."""
        return {
            "name": "DirGallery API",
            "version": "1.0.0",
            "status": "running",
            "scanDirectory": str(gallery.root),
            "docs": "/docs"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/image/{image_path:path}")
    async def image(image_path: str):
        """Serve an original media file from inside the root."""
        target = (gallery.root / image_path).resolve()
        if gallery.root not in target.parents:
            logger.warning(f"Rejected path outside gallery root: {image_path}")
            raise HTTPException(status_code=403, detail="Access denied")
        if not target.is_file() or not is_media(target.name):
            raise HTTPException(status_code=404, detail=f"Image not found: {image_path}")
        return FileResponse(target)

    return app
