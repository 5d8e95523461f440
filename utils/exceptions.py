"""Custom exception hierarchy for ani-reel.

Each failure class maps to one way a stream lookup, download or playback
can go wrong, so callers can decide whether to retry, skip or give up.
"""


class AniReelError(Exception):
    """Base exception for all ani-reel errors."""

    pass


class NetworkError(AniReelError):
    """Raised on timeouts, refused connections or non-success HTTP status.

    Network errors are considered retryable.
    """

    pass


class ParseError(AniReelError):
    """Raised when a page or API payload is not in the expected shape."""

    pass


class NotFound(AniReelError):
    """Raised when no playable stream location could be discovered."""

    pass


class UnsupportedSource(AniReelError):
    """Raised when a locator is not handled by any known source adapter."""

    pass


class PlayerProcessError(AniReelError):
    """Raised when the mpv process cannot be spawned or its socket never appears."""

    pass


class DownloadError(AniReelError):
    """Raised when a download job cannot be started or completed."""

    pass


class PartialDownloadError(DownloadError):
    """Raised when at least one ranged worker failed.

    The destination file is never finalized in this case.
    """

    pass


class PersistenceError(AniReelError):
    """Raised when JSON file I/O operations fail."""

    pass


class ConfigError(AniReelError):
    """Raised when configuration is invalid or missing."""

    pass
