"""
Media scanner: recursive directory walk producing MediaDescriptors.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from .. import config
from ..core.exceptions import ScanError
from ..core.filesystem import MediaDescriptor
from ..core.media import classify, looks_like_generated_artifact

logger = logging.getLogger(__name__)


@dataclass
class ScanProgress:
    """Track scanning progress"""
    is_scanning: bool = False
    current_directory: str = ""
    files_found: int = 0
    directories_scanned: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize progress for progress events"""
        return {
            'isScanning': self.is_scanning,
            'currentDirectory': self.current_directory,
            'filesFound': self.files_found,
            'directoriesScanned': self.directories_scanned,
            'errorsCount': len(self.errors),
        }


class Scanner:
    """
    Depth-first media scanner.

    Hidden entries, dependency directories, and the gallery's own cache
    directory are never descended into, so generated thumbnails are never
    picked up as source media. An unreadable directory is logged and skipped;
    it never aborts the scan.
    """

    def __init__(
        self,
        max_depth: Optional[int] = None,
        progress_callback: Optional[Callable[[ScanProgress], None]] = None,
        excluded_paths: Optional[Iterable[Path]] = None
    ):
        """
        Args:
            max_depth: Maximum directory depth below the root (None = unlimited)
            progress_callback: Called with the current ScanProgress at a bounded rate
            excluded_paths: Extra directories to skip, e.g. a cache directory
                living inside the root under a custom name
        """
        self.max_depth = max_depth
        self.progress_callback = progress_callback
        self.excluded_paths = {Path(p).resolve() for p in (excluded_paths or ())}
        self.progress = ScanProgress()
        self.errors: list[ScanError] = []

    def _should_skip_dir(self, name: str, path: Path) -> bool:
        """Check if a directory entry must not be descended into."""
        if name.startswith(config.HIDDEN_PREFIX):
            return True
        if name in (config.DEPENDENCY_DIR_NAME, config.CACHE_DIR_NAME):
            return True
        return path in self.excluded_paths

    def _report(self) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(self.progress)
        except Exception as e:
            logger.debug(f"Progress callback error: {e}")

    def _record_error(self, error: ScanError) -> None:
        logger.warning(str(error))
        self.errors.append(error)
        self.progress.errors.append({'path': str(error.path), 'error': str(error.cause)})

    def _walk(self, root: Path, directory: Path, found: list[MediaDescriptor], depth: int = 0) -> None:
        """
        Walk one directory, appending descriptors to found and recursing.
        """
        self.progress.current_directory = directory.relative_to(root).as_posix() if directory != root else 'Root'
        self.progress.directories_scanned += 1
        self._report()

        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self._record_error(ScanError(directory, e))
            return

        subdirs = []
        for entry in entries:
            path = Path(entry.path)
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not self._should_skip_dir(entry.name, path):
                        subdirs.append(path)
                    continue

                if not entry.is_file(follow_symlinks=False):
                    continue
                if entry.name.startswith(config.HIDDEN_PREFIX) or classify(entry.name) is None:
                    continue

                relative = path.relative_to(root)
                if looks_like_generated_artifact(relative, entry.name):
                    continue

                found.append(MediaDescriptor.from_path(root, path))
                self.progress.files_found += 1

                if self.progress.files_found % config.SCAN_PROGRESS_EVERY == 0:
                    self._report()

            except OSError as e:
                self._record_error(ScanError(path, e))

        for subdir in subdirs:
            if self.max_depth is None or depth < self.max_depth:
                self._walk(root, subdir, found, depth + 1)

    def scan(self, path: Path | str) -> list[MediaDescriptor]:
        """
        Scan a directory tree for media files.

        Each call is a fresh scan; nothing is carried over between calls.

        Args:
            path: Root directory to scan
        Returns:
            Descriptors in walk order (files of a directory before its subdirectories)
        Raises:
            ScanError: If the root itself is missing or not a directory
        """
        root = Path(path).resolve()
        if not root.is_dir():
            raise ScanError(root, NotADirectoryError(f"Invalid directory: {path}"))

        self.progress = ScanProgress(is_scanning=True)
        self.errors = []
        self._report()

        found: list[MediaDescriptor] = []
        try:
            self._walk(root, root, found)
        finally:
            self.progress.is_scanning = False
            self.progress.current_directory = 'Complete'
            self._report()

        logger.info(
            f"Scan of {root} complete: {len(found)} media files, "
            f"{self.progress.directories_scanned} directories, {len(self.errors)} errors"
        )
        return found


def summarize(descriptors: list[MediaDescriptor]) -> dict:
    """Counts by kind and by directory, for reporting."""
    by_directory: dict[str, int] = {}
    for descriptor in descriptors:
        by_directory[descriptor.directory] = by_directory.get(descriptor.directory, 0) + 1

    kinds = [d.kind.value for d in descriptors]
    return {
        'total': len(descriptors),
        'images': kinds.count('image'),
        'videos': kinds.count('video'),
        'directories': dict(sorted(by_directory.items())),
    }
