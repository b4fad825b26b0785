import logging
import httpx
from typing import Optional
from ..config import settings
from ..errors import FetchError

logger = logging.getLogger(__name__)

class UpstreamClient:
    """Shared HTTP client for manifests, thumbnails and proxied media."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client = httpx.AsyncClient(
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
        )

    async def fetch_text(self, url: str) -> str:
        resp = await self._get(url)
        return resp.text

    async def fetch_bytes(self, url: str) -> bytes:
        resp = await self._get(url)
        return resp.content

    async def _get(self, url: str) -> httpx.Response:
        try:
            resp = await self.client.get(url)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"Upstream returned {e.response.status_code} for {url}",
                url=url,
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"Failed to fetch {url}: {e}", url=url) from e

    async def open_stream(self, url: str, headers: Optional[dict] = None) -> httpx.Response:
        """
        Start a streamed GET. The caller owns the returned response and must
        `aclose()` it once the body has been consumed.
        """
        try:
            request = self.client.build_request("GET", url, headers=headers)
            return await self.client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"Failed to open stream {url}: {e}", url=url) from e

    async def close(self):
        await self.client.aclose()
