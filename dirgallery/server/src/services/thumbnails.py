"""
On-disk thumbnail cache.

Layout: one flat directory holding ``{key}.jpg`` (full) and ``{key}_tiny.jpg``
(tiny) per media file, where key is the reversible encoding of the file's
relative path. Presence of a file is the only cache state; source content is
never checksummed, so an image edited in place keeps its old thumbnail until
it is regenerated on demand.
"""
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..core.exceptions import DecodeError, GenerationError, StoreIOError
from ..core.filesystem import MediaDescriptor
from ..core.keys import ThumbnailVariant, artifact_name, parse_artifact_name, path_for_key
from ..core.media import MediaKind
from . import transform
from .transform import FrameExtractor

logger = logging.getLogger(__name__)

STATIC_PREFIX = '/static/thumbnails'


class ThumbnailStore:
    """Generates, persists, and looks up thumbnails for one cache directory."""

    def __init__(self, thumbnails_dir: Path | str, frame_extractor: Optional[FrameExtractor] = None):
        """
        Args:
            thumbnails_dir: Directory holding the thumbnail files
            frame_extractor: Optional callable returning a still frame for a video
        """
        self.thumbnails_dir = Path(thumbnails_dir)
        self.frame_extractor = frame_extractor

    def ensure(self) -> None:
        self.thumbnails_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, relative_path: str, variant: ThumbnailVariant) -> Path:
        return self.thumbnails_dir / artifact_name(relative_path, variant)

    def url_for(self, relative_path: str, variant: ThumbnailVariant) -> str:
        return f"{STATIC_PREFIX}/{quote(artifact_name(relative_path, variant))}"

    def exists(self, descriptor: MediaDescriptor, variant: ThumbnailVariant) -> bool:
        """Cheap existence probe; never generates. Unrepresentable names count as missing."""
        return os.path.isfile(self.path_for(descriptor.relative_path, variant))

    def generate(self, descriptor: MediaDescriptor, variant: ThumbnailVariant) -> Path:
        """
        Render and store one thumbnail variant for a media file.
        Args:
            descriptor: Source media
            variant: Which thumbnail to produce
        Returns:
            Path of the written thumbnail
        Raises:
            GenerationError: If the source cannot be decoded or the result cannot be stored
        """
        source = Path(descriptor.absolute_path)
        target = self.path_for(descriptor.relative_path, variant)

        try:
            if descriptor.kind is MediaKind.VIDEO:
                img = transform.load_video_frame(source, self.frame_extractor)
            else:
                img = transform.open_image(source)
            thumb = transform.render(img, variant)
        except Exception as e:
            raise GenerationError(descriptor, e) from e

        try:
            self._write_atomic(thumb, target, transform.quality_for(variant))
        except StoreIOError as e:
            raise GenerationError(descriptor, e) from e

        logger.debug(f"Generated {variant.value} thumbnail for {descriptor.relative_path}")
        return target

    def _write_atomic(self, img, target: Path, quality: int) -> None:
        """Encode into a temp file next to target, then rename it into place."""
        tmp_path = None
        try:
            self.ensure()
            fd, tmp_name = tempfile.mkstemp(dir=self.thumbnails_dir, prefix='.', suffix='.tmp')
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, 'wb') as f:
                img.save(f, format='JPEG', quality=quality, optimize=True)
            os.replace(tmp_path, target)
        except Exception as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StoreIOError(target, e) from e

    def remove(self, descriptor: MediaDescriptor) -> None:
        self.remove_relative(descriptor.relative_path)

    def remove_relative(self, relative_path: str) -> None:
        """Best-effort removal of both variants. Missing files are not an error."""
        for variant in ThumbnailVariant:
            path = self.path_for(relative_path, variant)
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove thumbnail {path.name}: {e}")

    def cleanup_orphans(self, root: Path | str) -> int:
        """
        Delete thumbnails whose source file no longer exists under root.

        Thumbnails whose names do not decode are logged and left alone.

        Returns:
            Number of media entries whose thumbnails were removed
        """
        root = Path(root)
        try:
            names = sorted(os.listdir(self.thumbnails_dir))
        except FileNotFoundError:
            return 0
        except OSError as e:
            logger.warning(f"Error during thumbnail cleanup: {e}")
            return 0

        removed = 0
        for name in names:
            if name.startswith('.'):
                continue  # in-progress temp files

            try:
                key, variant = parse_artifact_name(name)
                relative_path = path_for_key(key)
            except DecodeError:
                logger.warning(f"Could not decode thumbnail filename: {name}")
                continue

            artifact = self.thumbnails_dir / name
            if not artifact.exists():
                continue  # tiny sibling already removed with its full variant

            if variant is ThumbnailVariant.TINY and self.path_for(relative_path, ThumbnailVariant.FULL).exists():
                continue  # decided together with its full variant

            if (root / relative_path).exists():
                continue

            self.remove_relative(relative_path)
            logger.info(f"Cleaned orphaned thumbnail: {name}")
            removed += 1

        if removed:
            logger.info(f"Cleaned up {removed} orphaned thumbnails")
        return removed

    def count(self) -> int:
        """Number of full-variant thumbnails currently stored."""
        try:
            names = os.listdir(self.thumbnails_dir)
        except OSError:
            return 0

        total = 0
        for name in names:
            try:
                _, variant = parse_artifact_name(name)
            except DecodeError:
                continue
            if variant is ThumbnailVariant.FULL:
                total += 1
        return total

    def purge(self) -> None:
        """Delete the whole thumbnail directory."""
        try:
            shutil.rmtree(self.thumbnails_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreIOError(self.thumbnails_dir, e) from e
