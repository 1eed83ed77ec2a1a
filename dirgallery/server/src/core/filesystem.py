from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote

from .media import MediaKind, classify


@dataclass(slots=True, frozen=True)
class MediaDescriptor:
    """Immutable record of one media file discovered under a scan root."""

    name: str
    absolute_path: str
    relative_path: str
    directory: str
    size_bytes: int
    modified_at: str
    kind: MediaKind

    @classmethod
    def from_path(cls, root: Path, path: Path) -> "MediaDescriptor":
        """
        Build a descriptor for a media file under root.
        Args:
            root: Resolved scan root
            path: Path to the media file
        Returns:
            MediaDescriptor with root-relative, POSIX-style paths
        Raises:
            ValueError: If the file name is not a media file
            OSError: If the file cannot be stat'ed
        """
        kind = classify(path.name)
        if kind is None:
            raise ValueError(f"Not a media file: {path}")

        stat_info = path.stat()
        relative = path.relative_to(root)
        directory = relative.parent.as_posix()

        return cls(
            name=path.name,
            absolute_path=str(path),
            relative_path=relative.as_posix(),
            directory=directory or '.',
            size_bytes=stat_info.st_size,
            modified_at=datetime.fromtimestamp(stat_info.st_mtime, tz=timezone.utc).isoformat(),
            kind=kind,
        )

    @property
    def url(self) -> str:
        return f"/image/{quote(self.relative_path)}"

    @property
    def sort_key(self) -> tuple[bool, str, str]:
        # Root directory ('.') sorts ahead of every subdirectory
        return (self.directory != '.', self.directory, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.absolute_path,
            "relativePath": self.relative_path,
            "directory": self.directory,
            "size": self.size_bytes,
            "modified": self.modified_at,
            "type": self.kind.value,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaDescriptor":
        return cls(
            name=data["name"],
            absolute_path=data["path"],
            relative_path=data["relativePath"],
            directory=data["directory"],
            size_bytes=data["size"],
            modified_at=data["modified"],
            kind=MediaKind(data["type"]),
        )
