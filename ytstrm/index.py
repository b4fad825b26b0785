import json
import logging
import os
import fcntl
from pathlib import Path
from typing import Iterable, List, Optional, Set
from pydantic import ValidationError
from .models import CollectionIndex

logger = logging.getLogger(__name__)

MARKER_PREFIX = "yt-"


def marker(video_id: str) -> str:
    return f"{MARKER_PREFIX}{video_id}"


class IndexStore:
    """Explicit per-collection record of materialized items, kept next to them."""

    def __init__(self, path: Path, enabled: bool = True):
        self.path = Path(path)
        self.enabled = enabled
        self.index = CollectionIndex()
        self.read_only = False

    @property
    def lock_path(self) -> Path:
        return self.path.with_suffix('.lock')

    def load(self) -> CollectionIndex:
        self.index = CollectionIndex()
        if not self.enabled or not self.path.exists():
            return self.index

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
                self.index = CollectionIndex(**data)
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.error(f"Failed to load library index {self.path}: {e}. Falling back to filename scan.")
        return self.index

    def save(self):
        if not self.enabled or self.read_only:
            return

        tmp_path = self.path.with_suffix('.tmp')
        try:
            # the tmp file belongs to whoever holds this lock
            with open(self.lock_path, 'a') as lock:
                try:
                    fcntl.flock(lock, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning(f"Could not acquire lock for {self.path}. Skipping index save.")
                    return

                try:
                    with open(tmp_path, 'w') as f:
                        json.dump(self.index.model_dump(), f, indent=2)
                        f.flush()
                        os.fsync(f.fileno())
                    os.rename(tmp_path, self.path)
                finally:
                    fcntl.flock(lock, fcntl.LOCK_UN)

        except OSError as e:
            logger.error(f"Failed to save library index to {self.path}: {e}")
            self.read_only = True


class LibraryIndex:
    """Ids already materialized in one target folder. Rebuilt on every sync."""

    def __init__(self, filenames: Iterable[str], indexed_ids: Iterable[str] = ()):
        self.filenames: List[str] = list(filenames)
        self.ids: Set[str] = set(indexed_ids)

    @classmethod
    def scan(cls, folder: Path, store: Optional[IndexStore] = None) -> "LibraryIndex":
        folder = Path(folder)
        filenames = os.listdir(folder) if folder.exists() else []
        indexed = store.load().items.keys() if store is not None else ()
        return cls(filenames, indexed)

    def contains(self, video_id: str) -> bool:
        if video_id in self.ids:
            return True
        needle = marker(video_id)
        return any(needle in name for name in self.filenames)

    def has_file(self, filename: str) -> bool:
        return filename in self.filenames
