"""
FastAPI REST API endpoints for DirGallery.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .models import (
    CacheStatus, CleanupResponse, MediaMetadataResponse, MetadataUpdate,
    PauseResponse, RescanResponse, SearchResult, ThumbnailResponse, ViewportRequest,
    ViewportResponse
)
from ..core.exceptions import GenerationError, ScanError
from ..core.media import is_media
from ..services.gallery import GalleryService

logger = logging.getLogger(__name__)

# Router
router = APIRouter()


def get_gallery(request: Request) -> GalleryService:
    return request.app.state.gallery


def _check_media_path(gallery: GalleryService, relative_path: str) -> None:
    """Reject paths that are not media files inside the root."""
    if not is_media(relative_path):
        raise HTTPException(status_code=400, detail=f"Not a media file: {relative_path}")
    target = (gallery.root / relative_path).resolve()
    if gallery.root not in target.parents:
        raise HTTPException(status_code=403, detail="Access denied")


@router.get("/gallery")
async def get_gallery_data(gallery: GalleryService = Depends(get_gallery)):
    """Gallery snapshot grouped by directory."""
    try:
        return await gallery.gallery_payload()
    except ScanError as e:
        logger.error(f"Error scanning gallery: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/rescan", response_model=RescanResponse)
async def rescan(gallery: GalleryService = Depends(get_gallery)):
    """Invalidate the cache and rebuild the snapshot now."""
    try:
        snapshot = await gallery.force_rescan()
    except ScanError as e:
        logger.error(f"Error during rescan: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return RescanResponse(
        success=True,
        message="Cache invalidated and gallery rescanned",
        totalImages=snapshot.total_count
    )


@router.post("/viewport", response_model=ViewportResponse)
async def report_viewport(request: ViewportRequest, gallery: GalleryService = Depends(get_gallery)):
    """Prioritize thumbnails for media currently on screen."""
    prioritized = gallery.report_viewport(request.paths)
    return ViewportResponse(success=True, prioritized=prioritized)


@router.post("/pause", response_model=PauseResponse)
async def toggle_pause(gallery: GalleryService = Depends(get_gallery)):
    return PauseResponse(isPaused=gallery.toggle_pause())


@router.get("/generation-status")
async def generation_status(gallery: GalleryService = Depends(get_gallery)):
    return gallery.generation_status()


@router.get("/scan-progress")
async def scan_progress(gallery: GalleryService = Depends(get_gallery)):
    """Server-Sent Events stream of every progress event."""
    subscription = gallery.subscribe_progress()

    async def event_gen():
        try:
            async for event in subscription:
                yield event.to_sse()
        finally:
            gallery.unsubscribe_progress(subscription)

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
    }
    return StreamingResponse(event_gen(), headers=headers, media_type="text/event-stream")


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup(gallery: GalleryService = Depends(get_gallery)):
    """Delete thumbnails whose source media no longer exists."""
    removed = await gallery.cleanup_orphans()
    return CleanupResponse(success=True, removed=removed)


@router.get("/cache-status", response_model=CacheStatus)
async def cache_status(gallery: GalleryService = Depends(get_gallery)):
    return gallery.cache_status()


@router.get("/metadata/{image_path:path}", response_model=MediaMetadataResponse)
async def get_metadata(image_path: str, gallery: GalleryService = Depends(get_gallery)):
    _check_media_path(gallery, image_path)
    return gallery.metadata.load(image_path).to_dict()


@router.put("/metadata/{image_path:path}", response_model=MediaMetadataResponse)
async def update_metadata(
    image_path: str,
    update: MetadataUpdate,
    gallery: GalleryService = Depends(get_gallery)
):
    _check_media_path(gallery, image_path)

    changes = update.model_dump(exclude_none=True)
    metadata = gallery.metadata.update(image_path, **changes)
    if metadata is None:
        raise HTTPException(status_code=500, detail="Failed to save metadata")
    return metadata.to_dict()


@router.delete("/metadata/{image_path:path}")
async def delete_metadata(image_path: str, gallery: GalleryService = Depends(get_gallery)):
    _check_media_path(gallery, image_path)
    if not gallery.metadata.delete(image_path):
        raise HTTPException(status_code=404, detail=f"No metadata for: {image_path}")
    return {"success": True}


@router.get("/search", response_model=list[SearchResult])
async def search(q: str = Query(..., min_length=1), gallery: GalleryService = Depends(get_gallery)):
    """Search metadata by tag, description, or path."""
    return [
        SearchResult(imagePath=m.image_path, metadata=MediaMetadataResponse(**m.to_dict()))
        for m in gallery.metadata.search(q)
    ]


@router.get("/thumbnail/{image_path:path}", response_model=ThumbnailResponse)
async def get_thumbnail(image_path: str, gallery: GalleryService = Depends(get_gallery)):
    """Full thumbnail for one media file, generated on demand."""
    _check_media_path(gallery, image_path)
    try:
        url = await gallery.thumbnail(image_path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Media file not found")
    except GenerationError as e:
        logger.error(f"On-demand thumbnail failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate thumbnail")
    return ThumbnailResponse(thumbnail=url)
