class YtStrmError(Exception):
    """Base class for all errors raised by ytstrm."""


class ConfigError(YtStrmError):
    """Collection config file missing or invalid."""


class ExtractionError(YtStrmError):
    """yt-dlp exited non-zero, printed nothing, or printed invalid JSON."""


class ResolutionError(YtStrmError):
    """yt-dlp output has no usable audio/video substream pair."""


class FetchError(YtStrmError):
    """Upstream HTTP request failed."""

    def __init__(self, message: str, url: str = "", status_code: int = 0):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FilesystemError(YtStrmError):
    """Writing into the library folder failed."""
