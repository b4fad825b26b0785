from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape
from .models import CollectionMetadata, StreamItem

XML_HEADER = '<?xml version="1.0" encoding="UTF-8" standalone="yes" ?>'
_QUOTE_ENTITIES = {"'": "&apos;", '"': "&quot;"}


def xml_escape(value: Optional[str]) -> str:
    return escape(value or "", _QUOTE_ENTITIES)


def _air_date(timestamp: Optional[int]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d")


def episode_nfo(item: StreamItem, episode_number: int, season_number: int = 1, order_by_timestamp: bool = False) -> str:
    lines = [
        XML_HEADER,
        "<episodedetails>",
        f"    <title>{xml_escape(item.title)}</title>",
        f"    <plot>{xml_escape(item.description)}</plot>",
        f'    <uniqueid type="yt" default="true">{xml_escape(item.id)}</uniqueid>',
    ]
    # Numbering only applies when episodes are not sorted by air date
    if not order_by_timestamp:
        lines += [
            f"    <season>{season_number}</season>",
            f"    <episode>{episode_number}</episode>",
            "    <displayseason>-1</displayseason>",
            "    <displayepisode>-1</displayepisode>",
        ]
    aired = _air_date(item.timestamp)
    if aired:
        lines += [
            f"    <aired>{aired}</aired>",
            f"    <premiered>{aired}</premiered>",
        ]
    if item.duration_seconds is not None:
        lines.append(f"    <runtime>{item.duration_seconds / 60:.2f}</runtime>")
    for tag in item.tags:
        lines.append(f"    <tag>{xml_escape(tag)}</tag>")
    lines.append("</episodedetails>")
    return "\n".join(lines)


def show_nfo(list_id: str, metadata: CollectionMetadata) -> str:
    return "\n".join([
        XML_HEADER,
        "<tvshow>",
        f"    <title>{xml_escape(metadata.title)}</title>",
        f"    <plot>{xml_escape(metadata.description)}</plot>",
        f'    <uniqueid type="yt-playlist" default="true">{xml_escape(list_id)}</uniqueid>',
        "    <displayseason>-1</displayseason>",
        "    <displayepisode>-1</displayepisode>",
        "</tvshow>",
    ])
