import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import ValidationError
from .cache import ResolutionCache
from .errors import ResolutionError
from .models import CacheEntry, StreamFormat, StreamItem

logger = logging.getLogger(__name__)


def parse_upload_date(value: Optional[str]) -> Optional[int]:
    """CCYYMMDD -> Unix seconds of local midnight on that day."""
    if not value or len(value) != 8 or not value.isdigit():
        return None
    try:
        return int(datetime.strptime(value, "%Y%m%d").timestamp())
    except ValueError:
        return None


def derive_timestamp(data: Dict[str, Any]) -> Optional[int]:
    for key in ("timestamp", "release_timestamp"):
        if data.get(key) is not None:
            return int(data[key])
    return parse_upload_date(data.get("upload_date"))


def parse_video_info(video_id: str, data: Dict[str, Any]):
    """
    Turn `yt-dlp -j` output into (StreamItem, audio format, video format).
    Raises ResolutionError if the audio/video HLS pair is missing.
    """
    requested = data.get("requested_formats")
    if not requested:
        raise ResolutionError(f"No requested formats for {video_id}")

    try:
        formats = [StreamFormat.model_validate(f) for f in requested]
    except ValidationError as e:
        raise ResolutionError(f"Malformed requested formats for {video_id}: {e}") from e

    audio = next((f for f in formats if f.has_audio), None)
    video = next((f for f in formats if f.has_video), None)
    if audio is None or video is None:
        raise ResolutionError(f"No audio/video substream pair for {video_id}")

    item = StreamItem(
        id=video_id,
        title=data.get("fulltitle") or "",
        description=data.get("description") or "",
        timestamp=derive_timestamp(data),
        thumbnail_url=data.get("thumbnail"),
        duration_seconds=data.get("duration"),
        tags=data.get("tags") or [],
        audio_manifest_url=audio.url,
        video_manifest_url=video.url,
    )
    return item, audio, video


class StreamResolver:
    def __init__(self, ytdlp, upstream, cache: ResolutionCache):
        self.ytdlp = ytdlp
        self.upstream = upstream
        self.cache = cache
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def resolve(self, video_id: str) -> CacheEntry:
        """
        Return the cached entry for `video_id`, resolving it via yt-dlp on a
        miss. Concurrent callers for the same id share one resolution.
        """
        entry = self.cache.get(video_id)
        if entry is not None:
            logger.debug(f"Cache hit for {video_id}")
            return entry

        task = self._inflight.get(video_id)
        if task is None:
            task = asyncio.ensure_future(self._resolve_fresh(video_id))
            self._inflight[video_id] = task
            task.add_done_callback(lambda t: self._forget(video_id, t))
        else:
            logger.debug(f"Joining in-flight resolution for {video_id}")

        # shield: a cancelled waiter must not cancel the shared resolution
        return await asyncio.shield(task)

    def _forget(self, video_id: str, task: asyncio.Task):
        if self._inflight.get(video_id) is task:
            del self._inflight[video_id]

    async def _resolve_fresh(self, video_id: str) -> CacheEntry:
        logger.info(f"Freshly requesting {video_id}")
        data = await self.ytdlp.extract_video(video_id)
        item, audio, video = parse_video_info(video_id, data)

        audio_manifest, video_manifest = await asyncio.gather(
            self.upstream.fetch_text(audio.url),
            self.upstream.fetch_text(video.url),
        )

        entry = CacheEntry(
            item=item,
            audio_format=audio,
            video_format=video,
            audio_manifest=audio_manifest,
            video_manifest=video_manifest,
            cache_until=self.cache.expires_at(),
        )
        self.cache.put(video_id, entry)
        return entry
