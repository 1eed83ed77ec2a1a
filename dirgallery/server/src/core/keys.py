"""
Thumbnail key codec.

A thumbnail key is the padded URL-safe base64 encoding of a media file's
relative path. Keys never contain a path separator, decode back to the exact
relative path, and always have a length that is a multiple of four, which is
what lets ``{key}.jpg`` and ``{key}_tiny.jpg`` be told apart unambiguously.
"""
import base64
from enum import Enum

from .. import config
from .exceptions import DecodeError


class ThumbnailVariant(Enum):
    FULL = 'full'
    TINY = 'tiny'


def key_for(relative_path: str) -> str:
    """Encode a relative path as a thumbnail key."""
    raw = relative_path.encode('utf-8', 'surrogatepass')
    return base64.urlsafe_b64encode(raw).decode('ascii')


def path_for_key(key: str) -> str:
    """
    Decode a thumbnail key back to the relative path it was built from.

    Raises:
        DecodeError: If the key is not a canonical key produced by key_for
    """
    if len(key) % 4:
        raise DecodeError(key, "length is not a multiple of 4")

    try:
        raw = base64.b64decode(key.encode('ascii'), altchars=b'-_', validate=True)
    except ValueError as e:  # binascii.Error and UnicodeEncodeError included
        raise DecodeError(key, e) from e

    # '+' and '/' slip through the altchars translation; reject anything
    # key_for would not have produced
    if base64.urlsafe_b64encode(raw).decode('ascii') != key:
        raise DecodeError(key, "not a canonical key")

    try:
        return raw.decode('utf-8', 'surrogatepass')
    except UnicodeDecodeError as e:
        raise DecodeError(key, e) from e


def artifact_name(relative_path: str, variant: ThumbnailVariant) -> str:
    """File name of the stored thumbnail for a relative path."""
    key = key_for(relative_path)
    if variant is ThumbnailVariant.TINY:
        return f"{key}{config.TINY_MARKER}{config.THUMBNAIL_SUFFIX}"
    return f"{key}{config.THUMBNAIL_SUFFIX}"


def parse_artifact_name(filename: str) -> tuple[str, ThumbnailVariant]:
    """
    Split a stored thumbnail file name into its key and variant.

    The key is not decoded here; pass it to path_for_key for that.

    Raises:
        DecodeError: If the name does not follow the artifact naming scheme
    """
    if not filename.endswith(config.THUMBNAIL_SUFFIX):
        raise DecodeError(filename, "missing thumbnail suffix")

    stem = filename[:-len(config.THUMBNAIL_SUFFIX)]
    if len(stem) % 4 == 0:
        return stem, ThumbnailVariant.FULL

    if stem.endswith(config.TINY_MARKER):
        key = stem[:-len(config.TINY_MARKER)]
        if len(key) % 4 == 0:
            return key, ThumbnailVariant.TINY

    raise DecodeError(stem, "not a thumbnail artifact name")
