"""
Pydantic models for API requests and responses.
"""
from pydantic import BaseModel, Field
from typing import Optional


class ViewportRequest(BaseModel):
    """Media currently visible in a client, most important first."""
    paths: list[str] = Field(
        default_factory=list,
        description="Relative paths of visible media",
        examples=[["holiday/beach.jpg", "cat.png"]]
    )


class ViewportResponse(BaseModel):
    success: bool
    prioritized: int


class PauseResponse(BaseModel):
    isPaused: bool


class RescanResponse(BaseModel):
    success: bool
    message: str
    totalImages: int


class CleanupResponse(BaseModel):
    success: bool
    removed: int


class CacheStatus(BaseModel):
    """Snapshot cache state."""
    cached: bool
    lastScan: Optional[float] = None
    isStale: bool
    cacheDuration: float
    age: Optional[float] = None


class MetadataUpdate(BaseModel):
    """Partial metadata update; omitted fields are left unchanged."""
    tags: Optional[list[str]] = Field(default=None, description="Free-form tags")
    description: Optional[str] = Field(default=None, description="Caption")
    rating: Optional[int] = Field(default=None, ge=0, le=5, description="Star rating")


class MediaMetadataResponse(BaseModel):
    imagePath: str
    tags: list[str]
    description: str
    rating: int
    lastUpdated: Optional[str] = None


class SearchResult(BaseModel):
    imagePath: str
    metadata: MediaMetadataResponse


class ThumbnailResponse(BaseModel):
    thumbnail: str
