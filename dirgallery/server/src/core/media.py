"""
Media classification by file name.
"""
from enum import Enum
from pathlib import Path, PurePath
from typing import Optional

from .. import config
from .exceptions import DecodeError
from .keys import parse_artifact_name, path_for_key


class MediaKind(Enum):
    IMAGE = 'image'
    VIDEO = 'video'


def classify(filename: str) -> Optional[MediaKind]:
    """Return the media kind of a file name, or None for non-media files."""
    ext = PurePath(filename).suffix.lower()
    if ext in config.IMAGE_EXTS:
        return MediaKind.IMAGE
    if ext in config.VIDEO_EXTS:
        return MediaKind.VIDEO
    return None


def is_media(filename: str) -> bool:
    return classify(filename) is not None


def is_thumbnail_name(filename: str) -> bool:
    """
    True if the file name is one of our own stored thumbnails.

    A name only counts when its key decodes to the relative path of a media
    file, so ordinary photos like ``IMG1.jpg`` are not mistaken for thumbnails.
    """
    try:
        key, _ = parse_artifact_name(filename)
        relative_path = path_for_key(key)
    except DecodeError:
        return False
    return bool(relative_path) and is_media(PurePath(relative_path).name)


def looks_like_generated_artifact(path: Path | str, filename: str) -> bool:
    """
    Check whether a file is a generated artifact rather than source media.

    Args:
        path: Path of the file relative to the scan root
        filename: Name of the file
    Returns:
        True when the file must not be treated as source media
    """
    path = Path(path)

    if config.CACHE_DIR_NAME in path.parts:
        return True

    if is_thumbnail_name(filename):
        return True

    dir_parts = {part.lower() for part in path.parent.parts}
    return not dir_parts.isdisjoint(config.THUMBNAIL_DIR_PATTERNS)
