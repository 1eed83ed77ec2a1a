"""
User metadata (tags, description, rating) for media files.

Stored as one JSON document per media file in the cache's metadata directory,
named by the same key as the file's thumbnails.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..core.keys import key_for

logger = logging.getLogger(__name__)


@dataclass
class MediaMetadata:
    image_path: str
    tags: list[str] = field(default_factory=list)
    description: str = ""
    rating: int = 0
    last_updated: Optional[str] = None

    def matches(self, term: str) -> bool:
        """Case-insensitive match against tags, description, and path."""
        term = term.lower()
        return (
            any(term in tag.lower() for tag in self.tags)
            or term in self.description.lower()
            or term in self.image_path.lower()
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'imagePath': self.image_path,
            'tags': list(self.tags),
            'description': self.description,
            'rating': self.rating,
            'lastUpdated': self.last_updated,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MediaMetadata":
        return cls(
            image_path=d['imagePath'],
            tags=list(d.get('tags') or []),
            description=d.get('description') or "",
            rating=int(d.get('rating') or 0),
            last_updated=d.get('lastUpdated'),
        )


class MetadataStore:
    """JSON-file backed metadata, keyed by media relative path."""

    def __init__(self, metadata_dir: Path | str):
        self.metadata_dir = Path(metadata_dir)

    def ensure(self) -> None:
        self.metadata_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, relative_path: str) -> Path:
        return self.metadata_dir / f"{key_for(relative_path)}.json"

    def load(self, relative_path: str) -> MediaMetadata:
        """Stored metadata, or defaults if nothing has been saved yet."""
        path = self.path_for(relative_path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return MediaMetadata.from_dict(json.load(f))
        except FileNotFoundError:
            return MediaMetadata(image_path=relative_path)
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Unreadable metadata for {relative_path}: {e}")
            return MediaMetadata(image_path=relative_path)

    def save(self, metadata: MediaMetadata) -> bool:
        metadata.last_updated = datetime.now(timezone.utc).isoformat()
        path = self.path_for(metadata.image_path)
        try:
            self.ensure()
            tmp_path = path.with_name(f".{path.name}.tmp")
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(metadata.to_dict(), f, indent=2)
            os.replace(tmp_path, path)
            return True
        except OSError as e:
            logger.warning(f"Failed to save metadata for {metadata.image_path}: {e}")
            return False

    def update(self, relative_path: str, **changes) -> Optional[MediaMetadata]:
        """
        Apply field changes to a file's metadata and save it.

        Args:
            relative_path: Media file the metadata belongs to
            **changes: Any of tags, description, rating
        Returns:
            The updated metadata, or None if it could not be saved
        Raises:
            ValueError: If a change names an unknown field
        """
        metadata = self.load(relative_path)
        for name, value in changes.items():
            if name not in ('tags', 'description', 'rating'):
                raise ValueError(f"Unknown metadata field: {name}")
            setattr(metadata, name, value)

        if not self.save(metadata):
            return None
        return metadata

    def delete(self, relative_path: str) -> bool:
        try:
            self.path_for(relative_path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete metadata for {relative_path}: {e}")
            return False

    def all(self) -> dict[str, MediaMetadata]:
        try:
            names = sorted(os.listdir(self.metadata_dir))
        except OSError:
            return {}

        result = {}
        for name in names:
            if name.startswith('.') or not name.endswith('.json'):
                continue
            try:
                with open(self.metadata_dir / name, 'r', encoding='utf-8') as f:
                    metadata = MediaMetadata.from_dict(json.load(f))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Failed to read metadata file {name}: {e}")
                continue
            result[metadata.image_path] = metadata
        return result

    def search(self, query: str) -> list[MediaMetadata]:
        if not query:
            return []
        return [metadata for metadata in self.all().values() if metadata.matches(query)]
