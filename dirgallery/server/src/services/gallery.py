"""
Gallery service: everything that belongs to one gallery root, wired together.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from .. import config
from ..core.filesystem import MediaDescriptor
from ..core.keys import ThumbnailVariant
from ..core.worker import GenerationScheduler
from . import progress
from .metadata import MetadataStore
from .progress import ProgressBroadcaster, Subscription
from .scan import ScanProgress, Scanner
from .snapshot import GallerySnapshot, SnapshotCache
from .thumbnails import ThumbnailStore
from .transform import FrameExtractor
from .watcher import FileWatcher

logger = logging.getLogger(__name__)


def default_cache_dir(root: Path) -> Path:
    if config.CACHE_DIR:
        return Path(config.CACHE_DIR)
    return root / config.CACHE_DIR_NAME


class GalleryService:
    """
    Root-scoped context object.

    Owns the broadcaster, thumbnail and metadata stores, scanner, scheduler,
    snapshot cache and (once started) the file watcher for a single root.
    """

    def __init__(
        self,
        root: Path | str,
        cache_dir: Optional[Path | str] = None,
        frame_extractor: Optional[FrameExtractor] = None,
        cache_duration: float = config.CACHE_DURATION
    ):
        """
        Args:
            root: Directory whose media is served
            cache_dir: Where thumbnails and metadata live (default: <root>/.gallery-cache)
            frame_extractor: Optional video frame source; videos get a placeholder without one
            cache_duration: Snapshot freshness window in seconds
        """
        self.root = Path(root).resolve()
        self.cache_dir = Path(cache_dir).resolve() if cache_dir else default_cache_dir(self.root)

        self.broadcaster = ProgressBroadcaster()
        self.store = ThumbnailStore(self.cache_dir / config.THUMBNAILS_DIR_NAME, frame_extractor)
        self.metadata = MetadataStore(self.cache_dir / config.METADATA_DIR_NAME)
        self.scanner = Scanner(
            progress_callback=self._on_scan_progress,
            excluded_paths=[self.cache_dir],
        )
        self.scheduler = GenerationScheduler(self.store, self.broadcaster)
        self.snapshots = SnapshotCache(
            self.root, self.scanner, self.store, self.scheduler, self.broadcaster,
            cache_duration=cache_duration,
        )
        self.scheduler.on_thumbnail_ready = self.snapshots.on_thumbnail_ready

        self.watcher: Optional[FileWatcher] = None

    def _on_scan_progress(self, scan_progress: ScanProgress) -> None:
        # Runs on the scan's worker thread
        self.broadcaster.publish_threadsafe(progress.scan_progress(scan_progress.to_dict()))

    def ensure_dirs(self) -> None:
        self.store.ensure()
        self.metadata.ensure()

    async def start(self, watch: bool = True) -> None:
        """Bind to the running loop, create cache directories, and start watching."""
        loop = asyncio.get_running_loop()
        self.broadcaster.bind(loop)
        self.ensure_dirs()

        if watch:
            self.watcher = FileWatcher(
                self.root,
                on_added=self.snapshots.handle_added,
                on_removed=self.snapshots.handle_removed,
                loop=loop,
                cache_dir=self.cache_dir,
            )
            try:
                self.watcher.start()
            except OSError as e:
                logger.warning(f"File watching unavailable for {self.root}: {e}")
                self.watcher = None

        logger.info(f"Gallery service started for {self.root} (cache: {self.cache_dir})")

    async def shutdown(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        await self.scheduler.stop()
        logger.info("Gallery service stopped")

    async def get_snapshot(self) -> GallerySnapshot:
        return await self.snapshots.get_snapshot()

    async def gallery_payload(self) -> dict:
        """Snapshot serialized for clients, flagged with whether it came from cache."""
        cached = self.snapshots.lookup() is not None
        snapshot = await self.snapshots.get_snapshot()
        return snapshot.to_dict(cached=cached)

    async def force_rescan(self) -> GallerySnapshot:
        return await self.snapshots.force_rescan()

    def report_viewport(self, relative_paths: list[str]) -> int:
        return self.scheduler.report_viewport(relative_paths)

    def toggle_pause(self) -> bool:
        return self.scheduler.toggle_pause()

    def subscribe_progress(self) -> Subscription:
        return self.broadcaster.subscribe()

    def unsubscribe_progress(self, subscription: Subscription) -> None:
        self.broadcaster.unsubscribe(subscription)

    async def cleanup_orphans(self) -> int:
        return await asyncio.to_thread(self.store.cleanup_orphans, self.root)

    def cache_status(self) -> dict:
        return self.snapshots.cache_status()

    def generation_status(self) -> dict:
        return self.scheduler.state.to_dict()

    async def thumbnail(self, relative_path: str) -> str:
        """
        URL of the full thumbnail for one media file, generated now if absent.

        Raises:
            FileNotFoundError: If the source file does not exist
            GenerationError: If the thumbnail cannot be rendered or stored
        """
        source = self.root / relative_path
        if not source.is_file():
            raise FileNotFoundError(f"Media file not found: {relative_path}")

        descriptor = MediaDescriptor.from_path(self.root, source)
        if not self.store.exists(descriptor, ThumbnailVariant.FULL):
            await asyncio.to_thread(self.store.generate, descriptor, ThumbnailVariant.FULL)
            self.snapshots.on_thumbnail_ready(descriptor)
        return self.store.url_for(descriptor.relative_path, ThumbnailVariant.FULL)
