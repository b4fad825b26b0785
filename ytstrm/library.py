import asyncio
import io
import logging
import re
import time
from pathlib import Path
from typing import Callable, Optional
from PIL import Image, UnidentifiedImageError
from .config import settings
from .errors import FetchError, FilesystemError, YtStrmError
from .index import IndexStore, LibraryIndex, marker
from .models import CollectionEntry, CollectionMetadata, IndexedItem, PlaylistEntry
from .nfo import episode_nfo, show_nfo

logger = logging.getLogger(__name__)

SHOW_NFO_FILENAME = "tvshow.nfo"
POSTER_FILENAME = "poster.jpg"
MAX_FILENAME_BYTES = 255
MAX_TITLE_BYTES = 150
# longest suffix appended to an item stem
LONGEST_SUFFIX = "-thumb.jpg"

_UNSAFE_CHARS = re.compile(r'[\\/*?:"<>|\x00-\x1f\x80-\x9f]')
_STRIPPED_PUNCTUATION = re.compile(r"[,.'\"-]")


def sanitize_title(title: str, max_bytes: int = MAX_TITLE_BYTES) -> str:
    """
    Filesystem-safe, dot-separated version of a video title, at most
    `max_bytes` long in UTF-8 and never cut inside a character.
    """
    name = _UNSAFE_CHARS.sub("", title)
    name = _STRIPPED_PUNCTUATION.sub("", name)
    name = re.sub(r"\s+", ".", name.strip())
    name = re.sub(r"\.+", ".", name).strip(".")
    name = name.encode("utf-8")[:max(max_bytes, 0)].decode("utf-8", errors="ignore")
    return name.rstrip(".") or "untitled"


def title_budget(prefix: str, tail: str) -> int:
    """Bytes left for the title in `<prefix><title><tail><suffix>`."""
    used = len(f"{prefix}{tail}{LONGEST_SUFFIX}".encode("utf-8"))
    return min(MAX_TITLE_BYTES, MAX_FILENAME_BYTES - used)


def _write_text(path: Path, content: str):
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise FilesystemError(f"Failed to write {path}: {e}") from e


def _write_item_files(files):
    """Write (path, content) pairs; on failure remove the ones already written."""
    written = []
    try:
        for path, content in files:
            _write_text(path, content)
            written.append(path)
    except FilesystemError:
        # a leftover file carries the yt-<id> marker and would hide the item from later runs
        for path in written:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove partial file {path}: {e}")
        raise


def _save_jpeg(data: bytes, path: Path):
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.convert("RGB").save(path, "JPEG")
    except UnidentifiedImageError as e:
        raise FetchError(f"Thumbnail for {path.name} is not an image: {e}") from e
    except OSError as e:
        raise FilesystemError(f"Failed to write {path}: {e}") from e


class LibraryMaterializer:
    def __init__(self, synchronizer, resolver, upstream,
                 shows_root: Optional[str] = None,
                 base_url: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        self.synchronizer = synchronizer
        self.resolver = resolver
        self.upstream = upstream
        self.shows_root = Path(shows_root or settings.SHOWS_ROOT)
        self.base_url = (base_url or settings.base_url).rstrip('/')
        self.clock = clock

    def cutoff_for(self, collection: CollectionEntry) -> Optional[int]:
        timespan = collection.options.after_timespan
        if not timespan:
            return None
        return int(self.clock()) - timespan

    def strm_contents(self, video_id: str) -> str:
        return f"{self.base_url}/yt/{video_id}/master.m3u8"

    async def materialize_new(self, collection: CollectionEntry) -> int:
        """
        Write .strm/.nfo/thumbnail files for every collection item that is not in
        the target folder yet. Returns the number of items written.
        """
        try:
            summary = await self.synchronizer.synchronize(collection.url, self.cutoff_for(collection))
        except YtStrmError as e:
            logger.error(f"Could not list {collection.url}: {e}")
            return 0

        folder = self.shows_root / collection.dir
        try:
            await asyncio.to_thread(folder.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create library folder {folder}: {e}")
            return 0

        store = IndexStore(folder / settings.LIBRARY_INDEX_FILENAME, enabled=settings.LIBRARY_INDEX_ENABLED)
        library = await asyncio.to_thread(LibraryIndex.scan, folder, store)

        to_add = [
            (position + 1, entry)
            for position, entry in enumerate(summary.entries)
            if not library.contains(entry.id)
        ]
        if not to_add:
            logger.info(f"No new videos found for {collection.dir}, we're done here.")
            return 0

        if not library.has_file(SHOW_NFO_FILENAME):
            metadata = CollectionMetadata.model_validate(
                {**summary.metadata.model_dump(), **collection.options.metadata_override}
            )
            await self._write_show(folder, summary.list_id, metadata)

        added = 0
        for episode_number, entry in to_add:
            try:
                indexed = await self._materialize_item(folder, collection, entry, episode_number)
            except YtStrmError as e:
                logger.error(f"Skipping {entry.id}: {e}")
                continue
            store.index.items[entry.id] = indexed
            added += 1

        store.index.url = collection.url
        store.index.last_sync = self.clock()
        await asyncio.to_thread(store.save)

        logger.info(f"Added {added} of {len(to_add)} new videos to {collection.dir}")
        return added

    async def _write_show(self, folder: Path, list_id: str, metadata: CollectionMetadata):
        try:
            await asyncio.to_thread(_write_text, folder / SHOW_NFO_FILENAME, show_nfo(list_id, metadata))
        except FilesystemError as e:
            logger.error(f"Failed to write show metadata: {e}")
            return
        if metadata.thumb:
            await self._download_thumbnail(metadata.thumb, folder / POSTER_FILENAME)

    async def _materialize_item(self, folder: Path, collection: CollectionEntry,
                                entry: PlaylistEntry, episode_number: int) -> IndexedItem:
        logger.info(f"New video {entry.id}")
        resolved = await self.resolver.resolve(entry.id)
        item = resolved.item
        options = collection.options

        if options.order_by_timestamp:
            timestamp = item.timestamp if item.timestamp is not None else int(entry.timestamp or 0)
            prefix = f"{timestamp}."
        else:
            prefix = f"E{episode_number:04d}."
        tail = f".{marker(entry.id)}"
        stem = f"{prefix}{sanitize_title(item.title, title_budget(prefix, tail))}{tail}"

        logger.info(f"Writing .strm and .nfo files at {stem}")
        await asyncio.to_thread(_write_item_files, [
            (folder / f"{stem}.nfo",
             episode_nfo(item, episode_number, options.custom_season_number, options.order_by_timestamp)),
            (folder / f"{stem}.strm", self.strm_contents(entry.id)),
        ])

        if item.thumbnail_url:
            await self._download_thumbnail(item.thumbnail_url, folder / f"{stem}-thumb.jpg")

        return IndexedItem(
            filename=f"{stem}.strm",
            episode_number=episode_number,
            timestamp=item.timestamp,
            materialized_at=self.clock(),
        )

    async def _download_thumbnail(self, url: str, target: Path):
        try:
            data = await self.upstream.fetch_bytes(url)
            await asyncio.to_thread(_save_jpeg, data, target)
        except (FetchError, FilesystemError) as e:
            logger.warning(f"Thumbnail {target.name} not saved: {e}")
