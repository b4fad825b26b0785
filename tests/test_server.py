import unittest
import httpx
from fastapi.testclient import TestClient
from ytstrm import server
from ytstrm.cache import ResolutionCache
from ytstrm.clients.upstream_client import UpstreamClient
from ytstrm.config import settings
from ytstrm.errors import ResolutionError
from ytstrm.resolver import StreamResolver

FORMATS = [
    {"url": "https://m/v1/video.m3u8", "video_ext": "mp4", "audio_ext": "none", "tbr": 1000.0},
    {"url": "https://m/v1/audio.m3u8", "video_ext": "none", "audio_ext": "m4a", "format_note": "medium"},
]

class MockYtDlp:
    def __init__(self):
        self.calls = []

    async def extract_video(self, video_id):
        self.calls.append(video_id)
        if video_id == "broken":
            raise ResolutionError("No audio/video substream pair for broken")
        return {"fulltitle": "T", "formats": FORMATS, "requested_formats": FORMATS}

class _Stream(httpx.AsyncByteStream):
    def __init__(self, body: bytes):
        self.body = body

    async def __aiter__(self):
        yield self.body

def upstream_handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if url.endswith("audio.m3u8"):
        return httpx.Response(200, text="#EXTM3U\n#EXTINF:5,\nhttps://media/audio/seg1.ts")
    if url.endswith("video.m3u8"):
        return httpx.Response(200, text="#EXTM3U\n#EXTINF:5,\nhttps://media/video/seg1.ts")
    if url == "https://media/video/seg1.ts":
        if request.headers.get("range") == "bytes=0-3":
            return httpx.Response(206, stream=_Stream(b"\x00\x01\x02\x03"),
                                  headers={"content-type": "video/mp2t", "content-range": "bytes 0-3/10"})
        return httpx.Response(200, stream=_Stream(bytes(range(10))), headers={"content-type": "video/mp2t"})
    if url == "https://down/seg.ts":
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(404, stream=_Stream(b""))

class TestServer(unittest.TestCase):
    def setUp(self):
        self.old_base_url = settings.BASE_URL
        settings.BASE_URL = "http://x"
        self.ytdlp = MockYtDlp()
        upstream = UpstreamClient(transport=httpx.MockTransport(upstream_handler))
        server.upstream = upstream
        server.resolver = StreamResolver(self.ytdlp, upstream, ResolutionCache(3600))
        server.sync_runs.clear()
        self.client = TestClient(server.app)

    def tearDown(self):
        settings.BASE_URL = self.old_base_url
        server.resolver = None
        server.upstream = None

    def test_master_manifest(self):
        resp = self.client.get("/yt/v1/master.m3u8")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["content-type"], "application/x-mpegURL")
        self.assertIn('NAME="medium"', resp.text)
        self.assertTrue(resp.text.endswith("video.m3u8"))

    def test_audio_manifest_is_rewritten(self):
        resp = self.client.get("/yt/v1/audio.m3u8")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.text.split("\n")[2],
            "http://x/proxy/?url=https%3A%2F%2Fmedia%2Faudio%2Fseg1.ts",
        )

    def test_flavor_is_case_insensitive_and_resolved_once(self):
        self.assertEqual(self.client.get("/yt/v1/VIDEO.M3U8").status_code, 200)
        self.assertEqual(self.client.get("/yt/v1/master.m3u8").status_code, 200)
        self.assertEqual(self.ytdlp.calls, ["v1"])

    def test_unknown_flavor_is_404(self):
        resp = self.client.get("/yt/v1/subtitles.m3u8")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(self.ytdlp.calls, [])

    def test_resolution_failure_returns_empty_body(self):
        resp = self.client.get("/yt/broken/master.m3u8")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.content, b"")

    def test_proxy_streams_upstream_bytes(self):
        resp = self.client.get("/proxy/", params={"url": "https://media/video/seg1.ts"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.content, bytes(range(10)))
        self.assertEqual(resp.headers["content-type"], "video/mp2t")

    def test_proxy_without_trailing_slash(self):
        resp = self.client.get("/proxy", params={"url": "https://media/video/seg1.ts"})
        self.assertEqual(resp.content, bytes(range(10)))

    def test_proxy_forwards_range(self):
        resp = self.client.get(
            "/proxy/",
            params={"url": "https://media/video/seg1.ts"},
            headers={"Range": "bytes=0-3"},
        )

        self.assertEqual(resp.status_code, 206)
        self.assertEqual(resp.content, b"\x00\x01\x02\x03")
        self.assertEqual(resp.headers["content-range"], "bytes 0-3/10")

    def test_proxy_passes_upstream_status_through(self):
        resp = self.client.get("/proxy/", params={"url": "https://media/missing.ts"})
        self.assertEqual(resp.status_code, 404)

    def test_proxy_connection_failure(self):
        resp = self.client.get("/proxy/", params={"url": "https://down/seg.ts"})
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.content, b"")

    def test_rewritten_url_round_trips_through_proxy(self):
        manifest = self.client.get("/yt/v1/video.m3u8").text
        proxied = manifest.split("\n")[2].replace("http://x", "")

        resp = self.client.get(proxied)

        self.assertEqual(resp.content, bytes(range(10)))

    def test_status_reports_cache(self):
        self.client.get("/yt/v1/master.m3u8")
        server.sync_runs["My Show"] = {"url": "https://yt/list", "finished_at": 1.0, "added": 2}

        body = self.client.get("/status").json()

        self.assertEqual(body["cache_entries"], 1)
        self.assertEqual(body["inflight_resolutions"], 0)
        self.assertEqual(body["collections"]["My Show"]["added"], 2)
        self.assertIn("ytstrm_last_sync_added_items 2", self.client.get("/metrics").text)

    def test_healthz(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok", "last_sync_age": None})

if __name__ == '__main__':
    unittest.main()
