"""
Exception hierarchy for the gallery core.

None of these are fatal to the server: each is raised at the point of failure,
logged by the component that catches it, and the affected item is skipped.
"""


class GalleryError(Exception):
    """Base exception for all gallery errors."""
    pass


class ScanError(GalleryError):
    """Raised when a directory or file under the scan root cannot be read."""

    def __init__(self, path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Unable to scan {path}: {cause}")


class GenerationError(GalleryError):
    """Raised when a thumbnail cannot be produced for a media file."""

    def __init__(self, descriptor, cause: Exception):
        self.descriptor = descriptor
        self.cause = cause
        super().__init__(f"Failed to generate thumbnail for {descriptor.relative_path}: {cause}")


class DecodeError(GalleryError):
    """Raised when a thumbnail file name does not decode back to a relative path."""

    def __init__(self, key: str, cause: Exception | str):
        self.key = key
        self.cause = cause
        super().__init__(f"Could not decode thumbnail key {key!r}: {cause}")


class StoreIOError(GalleryError):
    """Raised when a thumbnail artifact cannot be written or deleted."""

    def __init__(self, path, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Thumbnail store I/O failed for {path}: {cause}")
