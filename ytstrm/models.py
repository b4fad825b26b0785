from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional

UNPROCESSABLE_LIVE_STATUSES = ("is_live", "is_upcoming", "post_live")

class StreamFormat(BaseModel):
    """One substream picked by yt-dlp from `requested_formats`."""
    model_config = ConfigDict(extra="ignore")

    url: str
    format_id: Optional[str] = None
    format_note: Optional[str] = None
    audio_ext: Optional[str] = None
    video_ext: Optional[str] = None
    tbr: Optional[float] = None  # kbit/s
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def has_audio(self) -> bool:
        return self.audio_ext is not None and self.audio_ext != "none"

    @property
    def has_video(self) -> bool:
        return self.video_ext is not None and self.video_ext != "none"

class StreamItem(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    timestamp: Optional[int] = None  # Unix seconds, may be derived from upload_date
    thumbnail_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    audio_manifest_url: Optional[str] = None
    video_manifest_url: Optional[str] = None

    @property
    def base_url_path(self) -> str:
        return f"/yt/{self.id}"

class CacheEntry(BaseModel):
    item: StreamItem
    audio_format: StreamFormat
    video_format: StreamFormat
    audio_manifest: str
    video_manifest: str
    cache_until: float

    @property
    def audio_label(self) -> str:
        return self.audio_format.format_note or "audio"

class PlaylistEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: Optional[str] = None
    timestamp: Optional[float] = None
    live_status: Optional[str] = None

    @property
    def can_be_processed(self) -> bool:
        return self.live_status not in UNPROCESSABLE_LIVE_STATUSES

class PlaylistWindow(BaseModel):
    entries: List[PlaylistEntry] = Field(default_factory=list)
    has_older_than_cutoff: bool = False

    @classmethod
    def from_entries(cls, entries: List[PlaylistEntry], cutoff: Optional[float]) -> "PlaylistWindow":
        older = cutoff is not None and any(
            e.timestamp is not None and e.timestamp < cutoff for e in entries
        )
        return cls(entries=entries, has_older_than_cutoff=older)

class CollectionMetadata(BaseModel):
    title: str = ""
    description: str = ""
    thumb: Optional[str] = None

class PlaylistSummary(BaseModel):
    list_id: str
    title: str = ""
    entries: List[PlaylistEntry] = Field(default_factory=list)
    metadata: CollectionMetadata = Field(default_factory=CollectionMetadata)

class CollectionOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    after_timespan: Optional[int] = Field(default=None, alias="afterTimespan")
    order_by_timestamp: bool = Field(default=False, alias="orderByTimestamp")
    custom_season_number: int = Field(default=1, alias="customSeasonNumber")
    metadata_override: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadataOverride", "playlistMetaOverride", "metadata_override"),
    )

class CollectionEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str
    dir: str = Field(validation_alias=AliasChoices("dir", "targetDir", "target_dir"))
    schedule: Optional[str] = None
    options: CollectionOptions = Field(default_factory=CollectionOptions)

class IndexedItem(BaseModel):
    filename: str
    episode_number: int
    timestamp: Optional[int] = None
    materialized_at: float = 0.0

class CollectionIndex(BaseModel):
    url: Optional[str] = None
    items: Dict[str, IndexedItem] = Field(default_factory=dict)
    last_sync: float = 0.0
