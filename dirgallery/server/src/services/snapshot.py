"""
services/snapshot.py: Gallery snapshot cache.

A snapshot captures every media file under the gallery root, grouped by
directory, together with whether each file's thumbnails already exist. It is
rebuilt lazily: only when it has expired or has been invalidated, and only
once no matter how many callers ask for it during a rebuild.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .. import config
from ..core.filesystem import MediaDescriptor
from ..core.keys import ThumbnailVariant
from ..core.worker import GenerationScheduler
from . import progress
from .progress import ProgressBroadcaster
from .scan import Scanner
from .thumbnails import ThumbnailStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class SnapshotItem:
    """One media file plus the URLs of whichever thumbnails exist."""
    descriptor: MediaDescriptor
    thumbnail: Optional[str] = None
    tiny_thumbnail: Optional[str] = None

    @property
    def thumbnail_ready(self) -> bool:
        return self.thumbnail is not None

    def to_dict(self) -> dict:
        d = self.descriptor.to_dict()
        d["thumbnail"] = self.thumbnail
        d["tinyThumbnail"] = self.tiny_thumbnail
        d["thumbnailReady"] = self.thumbnail_ready
        return d


@dataclass
class GallerySnapshot:
    """Point-in-time view of a root's media, grouped by directory."""
    root_path: str
    total_count: int
    by_directory: dict[str, list[SnapshotItem]] = field(default_factory=dict)
    captured_at: float = field(default_factory=time.time)
    stale: bool = False
    _by_path: dict[str, SnapshotItem] = field(default_factory=dict, repr=False)

    def add(self, item: SnapshotItem) -> None:
        self.by_directory.setdefault(item.descriptor.directory, []).append(item)
        self._by_path[item.descriptor.relative_path] = item

    @property
    def age(self) -> float:
        return time.time() - self.captured_at

    def is_fresh(self, cache_duration: float) -> bool:
        return self.age < cache_duration

    def items(self) -> list[SnapshotItem]:
        return [item for items in self.by_directory.values() for item in items]

    def find(self, relative_path: str) -> Optional[SnapshotItem]:
        return self._by_path.get(relative_path)

    def pending(self) -> list[MediaDescriptor]:
        """Descriptors without a full thumbnail, in display order."""
        return [item.descriptor for item in self.items() if not item.thumbnail_ready]

    def mark_ready(self, relative_path: str, thumbnail_url: str) -> bool:
        item = self.find(relative_path)
        if item is None:
            return False
        item.thumbnail = thumbnail_url
        return True

    def to_dict(self, cached: bool = False) -> dict:
        return {
            "scanDirectory": self.root_path,
            "totalImages": self.total_count,
            "galleries": {
                directory: [item.to_dict() for item in items]
                for directory, items in self.by_directory.items()
            },
            "lastScan": datetime.fromtimestamp(self.captured_at, tz=timezone.utc).isoformat(),
            "cached": cached,
        }


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class SnapshotCache:
    """
    Owns the one GallerySnapshot of a root.

    Rebuilds go: orphan cleanup, full rescan, thumbnail existence check,
    assembly, then handing files without thumbnails to the scheduler.
    """

    def __init__(
        self,
        root: Path | str,
        scanner: Scanner,
        store: ThumbnailStore,
        scheduler: GenerationScheduler,
        broadcaster: ProgressBroadcaster,
        cache_duration: float = config.CACHE_DURATION
    ):
        self.root = Path(root).resolve()
        self.scanner = scanner
        self.store = store
        self.scheduler = scheduler
        self.broadcaster = broadcaster
        self.cache_duration = cache_duration

        self.rebuild_count = 0
        self._snapshot: Optional[GallerySnapshot] = None
        self._build_task: Optional[asyncio.Task] = None
        self._invalidations = 0

    def lookup(self) -> Optional[GallerySnapshot]:
        """The cached snapshot if it can be served as is, else None."""
        snapshot = self._snapshot
        if snapshot is None or snapshot.stale or not snapshot.is_fresh(self.cache_duration):
            return None
        return snapshot

    async def get_snapshot(self) -> GallerySnapshot:
        """
        Serve the cached snapshot, rebuilding it first if needed.

        Concurrent callers during a rebuild all await the same build.

        Raises:
            ScanError: If the root cannot be scanned
        """
        snapshot = self.lookup()
        if snapshot is not None:
            return snapshot

        if self._build_task is None:
            self._build_task = asyncio.create_task(self._rebuild())
        # shield: one caller going away must not cancel the build for the others
        return await asyncio.shield(self._build_task)

    async def force_rescan(self) -> GallerySnapshot:
        self.invalidate("Manual rescan")
        snapshot = await self.get_snapshot()
        if snapshot.stale:
            # Joined a build that started before the invalidation
            snapshot = await self.get_snapshot()
        return snapshot

    def invalidate(self, reason: str) -> None:
        """Mark the snapshot stale; the rescan happens on the next get_snapshot."""
        self._invalidations += 1
        if self._snapshot is not None:
            self._snapshot.stale = True
        logger.info(f"Gallery cache invalidated: {reason}")
        self.broadcaster.publish(progress.cache_invalidated(reason))

    def _relative(self, path: Path | str) -> Optional[str]:
        try:
            return Path(path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def handle_added(self, path: Path | str) -> None:
        relative_path = self._relative(path)
        if relative_path is None:
            return
        self.invalidate(f"File added: {relative_path}")

    def handle_removed(self, path: Path | str) -> None:
        relative_path = self._relative(path)
        if relative_path is None:
            return
        self.store.remove_relative(relative_path)
        self.invalidate(f"File removed: {relative_path}")

    def on_thumbnail_ready(self, descriptor: MediaDescriptor) -> None:
        """Scheduler callback: flip the ready flag of the matching snapshot item."""
        if self._snapshot is None:
            return
        url = self.store.url_for(descriptor.relative_path, ThumbnailVariant.FULL)
        self._snapshot.mark_ready(descriptor.relative_path, url)

    def cache_status(self) -> dict:
        snapshot = self._snapshot
        return {
            "cached": snapshot is not None,
            "lastScan": snapshot.captured_at if snapshot else None,
            "isStale": self.lookup() is None,
            "cacheDuration": self.cache_duration,
            "age": round(snapshot.age, 3) if snapshot else None,
        }

    def _assemble(self, descriptors: list[MediaDescriptor]) -> GallerySnapshot:
        """Group descriptors by directory and probe the store for existing thumbnails."""
        snapshot = GallerySnapshot(root_path=str(self.root), total_count=len(descriptors))

        for descriptor in sorted(descriptors, key=lambda d: d.sort_key):
            item = SnapshotItem(descriptor=descriptor)
            relative_path = descriptor.relative_path
            if self.store.exists(descriptor, ThumbnailVariant.FULL):
                item.thumbnail = self.store.url_for(relative_path, ThumbnailVariant.FULL)
            if self.store.exists(descriptor, ThumbnailVariant.TINY):
                item.tiny_thumbnail = self.store.url_for(relative_path, ThumbnailVariant.TINY)
            snapshot.add(item)

        return snapshot

    async def _rebuild(self) -> GallerySnapshot:
        invalidations = self._invalidations
        try:
            logger.info(f"Rebuilding gallery snapshot for {self.root}")
            await asyncio.to_thread(self.store.cleanup_orphans, self.root)
            descriptors = await asyncio.to_thread(self.scanner.scan, self.root)
            snapshot = await asyncio.to_thread(self._assemble, descriptors)

            pending = snapshot.pending()
            self.scheduler.reset()
            self.scheduler.enqueue(pending)

            if self._invalidations != invalidations:
                snapshot.stale = True
            self._snapshot = snapshot
            self.rebuild_count += 1

            logger.info(
                f"Gallery snapshot ready: {snapshot.total_count} items in "
                f"{len(snapshot.by_directory)} directories, {len(pending)} thumbnails queued"
            )
            return snapshot
        finally:
            self._build_task = None
