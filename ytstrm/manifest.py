"""
HLS manifest helpers.

`rewrite_manifest` points every absolute URL of an upstream manifest at our
`/proxy/` route; `build_master_manifest` synthesizes the master playlist that
ties the audio and video sub-manifests of one resolved item together.
"""
import re
from urllib.parse import quote
from .models import CacheEntry

MPEGURL_CONTENT_TYPE = "application/x-mpegURL"
AUDIO_GROUP_ID = "default-audio-group"
DEFAULT_BANDWIDTH = 2000000

URL_PATTERN = re.compile(r'https?://[^"\s]+', re.IGNORECASE)

# Characters encodeURIComponent leaves untouched
_URI_COMPONENT_SAFE = "-_.!~*'()"


def proxy_url(url: str, proxy_base_url: str) -> str:
    return f"{proxy_base_url.rstrip('/')}/proxy/?url={quote(url, safe=_URI_COMPONENT_SAFE)}"


def rewrite_manifest(manifest: str, proxy_base_url: str) -> str:
    """
    Replace every absolute http(s) URL with a link through the proxy route.

    Works line by line and keeps the line count unchanged. Applying it twice
    double-encodes, so rewrite each manifest exactly once per serve.
    """
    lines = manifest.split("\n")
    rewritten = [
        URL_PATTERN.sub(lambda m: proxy_url(m.group(0), proxy_base_url), line)
        for line in lines
    ]
    return "\n".join(rewritten)


def _attr(value: str) -> str:
    # quoted-string attributes may not contain double quotes or line breaks
    return value.replace('"', "'").replace("\r", " ").replace("\n", " ")


def build_master_manifest(entry: CacheEntry) -> str:
    audio = entry.audio_format
    video = entry.video_format

    bandwidth = DEFAULT_BANDWIDTH
    if video.tbr:
        bandwidth = int(round((video.tbr + (audio.tbr or 0)) * 1000))

    stream_inf = f'#EXT-X-STREAM-INF:PROGRAM-ID=1,BANDWIDTH={bandwidth},AUDIO="{AUDIO_GROUP_ID}"'
    if video.width and video.height:
        stream_inf += f",RESOLUTION={video.width}x{video.height}"

    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:4",
        f'#EXT-X-MEDIA:TYPE=AUDIO,URI="audio.m3u8",GROUP-ID="{AUDIO_GROUP_ID}",'
        f'NAME="{_attr(entry.audio_label)}",AUTOSELECT=YES,DEFAULT=YES',
        "",
        stream_inf,
        "video.m3u8",
    ]
    return "\n".join(lines)
