"""
File watching for the gallery root.

watchdog delivers events on its observer thread; every callback is handed to
the event loop with call_soon_threadsafe so gallery state is only touched
from the loop.
"""
import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .. import config
from ..core.media import is_media, looks_like_generated_artifact

logger = logging.getLogger(__name__)

PathCallback = Callable[[str], None]


class _MediaEventHandler(FileSystemEventHandler):
    """Translate watchdog events into added/removed media paths."""

    def __init__(self, watcher: "FileWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher._dispatch_added(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        # A deleted directory may have held media; treat it as a removal
        self.watcher._dispatch_removed(os.fsdecode(event.src_path), event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self.watcher._dispatch_removed(os.fsdecode(event.src_path), event.is_directory)
        if not event.is_directory:
            self.watcher._dispatch_added(os.fsdecode(event.dest_path))


class FileWatcher:
    """Watch a gallery root recursively for media files appearing or disappearing."""

    def __init__(
        self,
        root: Path | str,
        on_added: PathCallback,
        on_removed: PathCallback,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        cache_dir: Optional[Path] = None
    ):
        """
        Args:
            root: Directory to watch
            on_added: Called with the absolute path of a new media file
            on_removed: Called with the absolute path of a removed media file or directory
            loop: Event loop the callbacks run on (None = call directly on the observer thread)
            cache_dir: Gallery cache directory to ignore when it lives under root
        """
        self.root = Path(root).resolve()
        self.on_added = on_added
        self.on_removed = on_removed
        self.loop = loop
        self.cache_dir = Path(cache_dir).resolve() if cache_dir else None

        self._observer = None
        self._handler = _MediaEventHandler(self)

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._observer = Observer()
        self._observer.schedule(self._handler, str(self.root), recursive=True)
        self._observer.start()
        logger.info(f"Watching {self.root} for changes")

    def stop(self) -> None:
        if self._observer is None:
            return
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join(timeout=2)
        self._observer = None
        logger.info("File watcher stopped")

    def is_ignored(self, path: str) -> bool:
        """True for paths outside root, hidden entries, dependencies, and cache files."""
        try:
            relative = Path(path).relative_to(self.root)
        except ValueError:
            return True

        for part in relative.parts:
            if part.startswith(config.HIDDEN_PREFIX) or part in (config.DEPENDENCY_DIR_NAME, config.CACHE_DIR_NAME):
                return True

        if self.cache_dir is not None:
            absolute = Path(path)
            if absolute == self.cache_dir or self.cache_dir in absolute.parents:
                return True

        return False

    def _call(self, callback: PathCallback, path: str) -> None:
        if self.loop is None:
            callback(path)
            return
        try:
            self.loop.call_soon_threadsafe(callback, path)
        except RuntimeError:
            logger.debug(f"Event loop closed, dropping watch event for {path}")

    def _is_source_media(self, path: str) -> bool:
        name = Path(path).name
        return is_media(name) and not looks_like_generated_artifact(Path(path).relative_to(self.root), name)

    def _dispatch_added(self, path: str) -> None:
        if self.is_ignored(path) or not self._is_source_media(path):
            return
        logger.debug(f"Media added: {path}")
        self._call(self.on_added, path)

    def _dispatch_removed(self, path: str, is_directory: bool = False) -> None:
        if self.is_ignored(path):
            return
        if not is_directory and not self._is_source_media(path):
            return
        logger.debug(f"Media removed: {path}")
        self._call(self.on_removed, path)
