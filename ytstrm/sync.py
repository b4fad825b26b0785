import logging
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ValidationError
from .errors import ExtractionError, YtStrmError
from .models import CollectionMetadata, PlaylistEntry, PlaylistSummary, PlaylistWindow

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 10

class SyncPhase(str, Enum):
    FETCHING = "fetching"
    FILTERING = "filtering"
    DONE = "done"
    ABORTED = "aborted"

class SyncProgress(BaseModel):
    cutoff: Optional[float] = None
    window_size: int = DEFAULT_WINDOW_SIZE
    phase: SyncPhase = SyncPhase.FETCHING
    offset: int = 0
    pages_fetched: int = 0
    entries: List[PlaylistEntry] = Field(default_factory=list)
    error: Optional[str] = None


def reduce_window(progress: SyncProgress, window: PlaylistWindow) -> SyncProgress:
    """
    Fold one fetched page into the progress.

    Keeps the page's entries with `timestamp >= cutoff` (all of them when there
    is no cutoff) and moves on to FILTERING once the page holds an entry older
    than the cutoff, comes back empty, or there is no cutoff at all.
    """
    if progress.phase is not SyncPhase.FETCHING:
        raise ValueError(f"Cannot fold a window in phase {progress.phase.value}")

    cutoff = progress.cutoff
    if cutoff is None:
        fresh = list(window.entries)
    else:
        fresh = [e for e in window.entries if e.timestamp is not None and e.timestamp >= cutoff]

    seen = {e.id for e in progress.entries}
    fresh = [e for e in fresh if e.id not in seen]

    finished = cutoff is None or window.has_older_than_cutoff or not window.entries

    return progress.model_copy(update={
        "entries": progress.entries + fresh,
        "pages_fetched": progress.pages_fetched + 1,
        "offset": progress.offset + progress.window_size,
        "phase": SyncPhase.FILTERING if finished else SyncPhase.FETCHING,
    })


def filter_unavailable(progress: SyncProgress) -> SyncProgress:
    """Drop live, upcoming and post-live entries; a later run picks them up."""
    if progress.phase is not SyncPhase.FILTERING:
        raise ValueError(f"Cannot filter in phase {progress.phase.value}")

    kept = []
    for entry in progress.entries:
        if entry.can_be_processed:
            kept.append(entry)
        else:
            logger.info(f"Entry {entry.id} cannot be processed because live_status is {entry.live_status}")

    return progress.model_copy(update={"entries": kept, "phase": SyncPhase.DONE})


def abort(progress: SyncProgress, error: Exception) -> SyncProgress:
    return progress.model_copy(update={"phase": SyncPhase.ABORTED, "error": str(error), "entries": []})


def parse_entries(data: Dict[str, Any]) -> List[PlaylistEntry]:
    try:
        return [PlaylistEntry.model_validate(e) for e in data.get("entries") or [] if e]
    except ValidationError as e:
        raise ExtractionError(f"Malformed playlist entries: {e}") from e


def parse_collection_metadata(data: Dict[str, Any]) -> CollectionMetadata:
    thumbnails = data.get("thumbnails") or []
    thumb = thumbnails[-1].get("url") if thumbnails else None
    return CollectionMetadata(
        title=data.get("title") or "",
        description=data.get("description") or "",
        thumb=thumb,
    )


class PlaylistSynchronizer:
    def __init__(self, ytdlp, window_size: int = DEFAULT_WINDOW_SIZE):
        self.ytdlp = ytdlp
        self.window_size = window_size
        self.last_progress: Optional[SyncProgress] = None

    async def synchronize(self, url: str, cutoff: Optional[float] = None) -> PlaylistSummary:
        """
        List the entries of a playlist/channel that are new enough to process.

        Without a cutoff the whole collection is fetched at once. With one, it is
        paged in windows, most recent first, until a page reaches past the cutoff.
        Raises ExtractionError and returns nothing on any failure.
        """
        progress = SyncProgress(cutoff=cutoff, window_size=self.window_size)
        header: Optional[Dict[str, Any]] = None

        if cutoff is not None:
            logger.info(f"Requesting {url} in windows of {self.window_size} until {int(cutoff)}")

        try:
            while progress.phase is SyncPhase.FETCHING:
                if cutoff is None:
                    data = await self.ytdlp.extract_playlist(url)
                else:
                    start = progress.offset + 1
                    end = progress.offset + self.window_size
                    logger.info(f"Get playlist part [{start}-{end}] {url}")
                    data = await self.ytdlp.extract_playlist(url, start=start, end=end)

                if header is None:
                    header = data
                window = PlaylistWindow.from_entries(parse_entries(data), cutoff)
                progress = reduce_window(progress, window)

            progress = filter_unavailable(progress)
        except YtStrmError as e:
            self.last_progress = abort(progress, e)
            logger.error(f"Sync of {url} aborted after {progress.pages_fetched} pages: {e}")
            raise

        self.last_progress = progress
        list_id = str(header.get("id") or url)
        metadata = parse_collection_metadata(header)
        return PlaylistSummary(
            list_id=list_id,
            title=metadata.title,
            entries=progress.entries,
            metadata=metadata,
        )
