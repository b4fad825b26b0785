import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from ..config import settings
from ..errors import ExtractionError

logger = logging.getLogger(__name__)

# best HLS video + best HLS audio, picked by yt-dlp into `requested_formats`
HLS_FORMAT_SELECTOR = "bv[protocol*=m3u8]+ba[protocol*=m3u8]"

class YtDlpClient:
    def __init__(self, binary: Optional[str] = None):
        self.binary = binary or settings.YTDLP_BINARY

    async def _run_json(self, args: List[str]) -> Dict[str, Any]:
        cmd = [self.binary, *args]
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionError(f"Could not start {self.binary}: {e}") from e

        stdout, stderr = await proc.communicate()

        if proc.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip() or "Unknown error"
            raise ExtractionError(f"yt-dlp exited with {proc.returncode}: {error_msg}")

        if not stdout.strip():
            raise ExtractionError("yt-dlp returned no output")

        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Failed to parse yt-dlp output: {e}") from e

        if not isinstance(data, dict):
            raise ExtractionError("yt-dlp output is not a JSON object")
        return data

    async def extract_playlist(self, url: str, start: Optional[int] = None, end: Optional[int] = None) -> Dict[str, Any]:
        """
        Flat listing of a playlist/channel. `start`/`end` are 1-based and
        inclusive, as yt-dlp's --playlist-items expects them.
        """
        args = ["--flat-playlist", "--extractor-args", "youtubetab:approximate_date"]
        if start is not None and end is not None:
            args += ["-I", f"{start}:{end}"]
        args += ["-J", url]
        return await self._run_json(args)

    async def extract_video(self, video_id: str) -> Dict[str, Any]:
        return await self._run_json(["-j", "-f", HLS_FORMAT_SELECTOR, "--", video_id])
