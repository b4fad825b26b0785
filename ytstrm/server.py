import logging
import time
from typing import Dict, Optional
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask
from .clients.upstream_client import UpstreamClient
from .config import settings
from .errors import YtStrmError
from .manifest import MPEGURL_CONTENT_TYPE, build_master_manifest, rewrite_manifest
from .resolver import StreamResolver

logger = logging.getLogger(__name__)

app = FastAPI(title="ytstrm")
resolver: Optional[StreamResolver] = None
upstream: Optional[UpstreamClient] = None
# collection dir -> {"finished_at": ..., "added": ...}, filled in by the service
sync_runs: Dict[str, dict] = {}

PLAYLIST_FLAVORS = ("master", "audio", "video")
FORWARDED_REQUEST_HEADERS = ("range",)
FORWARDED_RESPONSE_HEADERS = ("content-type", "content-length", "content-encoding", "content-range", "accept-ranges")

@app.get("/yt/{video_id}/{playlist}")
async def youtube_playlist(video_id: str, playlist: str):
    flavor = playlist.lower().split(".")[0]
    if flavor not in PLAYLIST_FLAVORS:
        return Response(status_code=404)

    logger.info(f"Requesting yt video {video_id} ({flavor})")
    try:
        entry = await resolver.resolve(video_id)
    except YtStrmError as e:
        logger.error(f"Failed to resolve {video_id}: {e}")
        return Response(status_code=502, media_type=MPEGURL_CONTENT_TYPE)

    if flavor == "master":
        body = build_master_manifest(entry)
    elif flavor == "audio":
        body = rewrite_manifest(entry.audio_manifest, settings.base_url)
    else:
        body = rewrite_manifest(entry.video_manifest, settings.base_url)

    return Response(content=body, media_type=MPEGURL_CONTENT_TYPE)

@app.get("/proxy")
@app.get("/proxy/")
async def proxy(request: Request, url: str = Query(...)):
    headers = {k: request.headers[k] for k in FORWARDED_REQUEST_HEADERS if k in request.headers}
    try:
        upstream_resp = await upstream.open_stream(url, headers=headers)
    except YtStrmError as e:
        logger.error(f"Proxy request failed: {e}")
        return Response(status_code=502)

    response_headers = {
        k: upstream_resp.headers[k] for k in FORWARDED_RESPONSE_HEADERS if k in upstream_resp.headers
    }
    return StreamingResponse(
        upstream_resp.aiter_raw(),
        status_code=upstream_resp.status_code,
        headers=response_headers,
        background=BackgroundTask(upstream_resp.aclose),
    )

@app.get("/healthz")
def healthz():
    if not resolver:
        return {"status": "starting"}

    finished = [run["finished_at"] for run in sync_runs.values()]
    if not finished:
        return {"status": "ok", "last_sync_age": None}
    return {"status": "ok", "last_sync_age": time.time() - max(finished)}

@app.get("/status")
def status():
    if not resolver:
        return {"status": "not_ready"}

    return {
        "cache_entries": len(resolver.cache),
        "inflight_resolutions": resolver.inflight_count,
        "collections": sync_runs,
        "config": {
            "base_url": settings.base_url,
            "cache_ttl": settings.CACHE_TTL_SECONDS,
            "window_size": settings.SYNC_WINDOW_SIZE,
        }
    }

@app.get("/metrics")
def metrics():
    # Simple prometheus-style text format
    if not resolver:
        return PlainTextResponse("")

    last_sync = max((run["finished_at"] for run in sync_runs.values()), default=0)
    added = sum(run["added"] for run in sync_runs.values())
    lines = [
        f'ytstrm_cache_entries {len(resolver.cache)}',
        f'ytstrm_inflight_resolutions {resolver.inflight_count}',
        f'ytstrm_last_sync_timestamp {last_sync}',
        f'ytstrm_last_sync_added_items {added}',
    ]
    return PlainTextResponse("\n".join(lines) + "\n")
